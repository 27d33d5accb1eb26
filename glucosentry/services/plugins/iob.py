import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from glucosentry.core.constants import THIRTY_MINUTES
from glucosentry.models.properties import IobResult, PillInfo
from glucosentry.models.records import DeviceStatus, Treatment
from glucosentry.services.math.curves import InsulinCurves, InsulinEffect
from glucosentry.services.plugins.base import PROPERTIES_AND_PILL, Plugin
from glucosentry.services.profile import ProfileResolver
from glucosentry.utils.timezone import parse_timestamp_ms
from glucosentry.utils.times import mins
from glucosentry.utils.units import round_half_up, to_fixed

logger = logging.getLogger(__name__)

RECENCY_THRESHOLD = THIRTY_MINUTES
# device clocks drift, accept statuses slightly in the future
FUTURE_TOLERANCE = int(mins(5).msecs)


def calc_treatment(
    treatment: Treatment,
    profile: Optional[ProfileResolver],
    time: int,
    profile_name: Optional[str] = None,
) -> InsulinEffect:
    if not treatment.insulin:
        return InsulinEffect()
    dia = (profile.get_dia(time, profile_name) if profile else None) or InsulinCurves.DEFAULT_DIA
    sens = (profile.get_sensitivity(time, profile_name) if profile else None) or 0.0
    return InsulinCurves.treatment_effect(treatment.insulin, time - treatment.mills, dia, sens)


def from_treatments(
    treatments: Sequence[Treatment],
    profile: Optional[ProfileResolver],
    time: int,
    profile_name: Optional[str] = None,
) -> IobResult:
    total_iob = 0.0
    total_activity = 0.0
    last_bolus: Optional[Treatment] = None

    for treatment in treatments:
        if treatment.mills > time:
            continue
        effect = calc_treatment(treatment, profile, time, profile_name)
        if effect.iob_contrib > 0:
            last_bolus = treatment
        total_iob += effect.iob_contrib
        # units: BG (mg/dL)
        total_activity += effect.activity_contrib

    return IobResult(
        iob=round_half_up(total_iob, 3),
        activity=total_activity,
        last_bolus=last_bolus,
        source="Care Portal",
    )


def from_device_status(status: DeviceStatus) -> Optional[IobResult]:
    openaps_iob = (status.openaps or {}).get("iob")
    loop_iob = (status.loop or {}).get("iob")
    pump_iob = (status.pump or {}).get("iob")

    if openaps_iob:
        # AMA uploads a list of predictions with "time" instead of "timestamp"
        if isinstance(openaps_iob, list):
            openaps_iob = openaps_iob[0] if openaps_iob else None
        if not openaps_iob:
            return None
        timestamp = openaps_iob.get("time") or openaps_iob.get("timestamp")
        return IobResult(
            iob=openaps_iob.get("iob"),
            basaliob=openaps_iob.get("basaliob"),
            activity=openaps_iob.get("activity"),
            source="OpenAPS",
            device=status.device,
            mills=parse_timestamp_ms(timestamp) or status.mills,
        )

    if loop_iob:
        return IobResult(
            iob=loop_iob.get("iob"),
            source="Loop",
            device=status.device,
            mills=parse_timestamp_ms(loop_iob.get("timestamp")) or status.mills,
        )

    if pump_iob:
        return IobResult(
            iob=pump_iob.get("iob") or pump_iob.get("bolusiob"),
            source="MM Connect" if status.connect is not None else None,
            device=status.device,
            mills=status.mills,
        )
    return None


def last_iob_device_status(devicestatus: Optional[Sequence[DeviceStatus]], time: int) -> Optional[IobResult]:
    if not devicestatus:
        return None
    future_mills = time + FUTURE_TOLERANCE
    recent_mills = time - RECENCY_THRESHOLD

    iobs = []
    for status in devicestatus:
        if recent_mills <= status.mills <= future_mills:
            result = from_device_status(status)
            if result is not None:
                iobs.append(result)
    iobs.sort(key=lambda r: r.mills or 0)

    # Loop uploads both its own and the pump's IOB; prefer Loop's
    loop_iobs = [r for r in iobs if r.source == "Loop"]
    if loop_iobs:
        return loop_iobs[-1]
    return iobs[-1] if iobs else None


def add_display(result: IobResult) -> IobResult:
    if result.iob is None:
        return result
    display = to_fixed(result.iob)
    result.display = display
    result.display_line = f"IOB: {display}U"
    return result


def calc_total(
    treatments: Optional[Sequence[Treatment]],
    devicestatus: Optional[Sequence[DeviceStatus]],
    profile: Optional[ProfileResolver],
    time: int,
    profile_name: Optional[str] = None,
) -> IobResult:
    result = last_iob_device_status(devicestatus, time)
    treatment_result = from_treatments(treatments, profile, time, profile_name) if treatments else None

    if result is None:
        result = treatment_result
    elif treatment_result is not None and treatment_result.iob:
        result.treatment_iob = round_half_up(treatment_result.iob, 3)

    if result is None:
        return IobResult()
    if result.iob:
        result.iob = round_half_up(result.iob, 3)
    return add_display(result)


class IobPlugin(Plugin):
    name = "iob"
    label = "Insulin-on-Board"
    plugin_type = "pill-major"
    capabilities = PROPERTIES_AND_PILL

    def set_properties(self, sbx) -> None:
        sbx.offer_property(
            "iob",
            lambda: calc_total(sbx.data.treatments, sbx.data.devicestatus, sbx.profile, sbx.time),
        )

    def update_visualisation(self, sbx) -> Optional[PillInfo]:
        prop: Optional[IobResult] = sbx.properties.get("iob")
        info = []
        if prop is not None and prop.last_bolus is not None:
            when = datetime.fromtimestamp(prop.last_bolus.mills / 1000, tz=timezone.utc).strftime("%H:%M")
            amount = sbx.round_insulin_for_display_format(prop.last_bolus.insulin or 0) + "U"
            info.append({"label": "Last Bolus", "value": f"{amount} @ {when}"})
        if prop is not None and prop.basaliob is not None:
            info.append({"label": "Basal IOB", "value": f"{prop.basaliob:.2f}"})
        if prop is not None and prop.source:
            info.append({"label": "Source", "value": prop.source})
        if prop is not None and prop.device:
            info.append({"label": "Device", "value": prop.device})
        if prop is not None and prop.treatment_iob is not None:
            info.append({"label": "------------", "value": ""})
            info.append({"label": "Careportal IOB", "value": f"{prop.treatment_iob:.2f}"})

        if prop is not None and prop.display is not None:
            value = sbx.round_insulin_for_display_format(float(prop.display)) + "U"
        else:
            value = "---U"
        return PillInfo(label="IOB", value=value, info=info)
