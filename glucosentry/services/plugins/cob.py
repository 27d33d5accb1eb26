import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from glucosentry.core.constants import TEN_MINUTES, THIRTY_MINUTES
from glucosentry.models.properties import CobResult, PillInfo
from glucosentry.models.records import DeviceStatus, Treatment
from glucosentry.services.math.curves import CarbCurves
from glucosentry.services.plugins.base import PROPERTIES_AND_PILL, Plugin
from glucosentry.services.plugins.iob import FUTURE_TOLERANCE, from_treatments as iob_from_treatments
from glucosentry.services.profile import ProfileResolver
from glucosentry.utils.timezone import parse_timestamp_ms
from glucosentry.utils.times import MS_PER_HOUR, MS_PER_MINUTE
from glucosentry.utils.units import round_half_up

logger = logging.getLogger(__name__)

RECENCY_THRESHOLD = THIRTY_MINUTES
# Nightscout's careportal default when a profile has no carbs_hr
DEFAULT_CARB_ABSORPTION_RATE = 20.0


def _openaps_last_cob(openaps: dict[str, Any]) -> tuple[Optional[float], Optional[int]]:
    suggested = openaps.get("suggested")
    enacted = openaps.get("enacted")
    if suggested and enacted:
        suggested_mills = parse_timestamp_ms(suggested.get("timestamp"))
        enacted_mills = parse_timestamp_ms(enacted.get("timestamp"))
        if enacted_mills is not None and (suggested_mills is None or enacted_mills > suggested_mills):
            return enacted.get("COB"), enacted_mills
        return suggested.get("COB"), suggested_mills
    if enacted:
        return enacted.get("COB"), parse_timestamp_ms(enacted.get("timestamp"))
    if suggested:
        return suggested.get("COB"), parse_timestamp_ms(suggested.get("timestamp"))
    return None, None


def from_device_status(status: DeviceStatus) -> Optional[CobResult]:
    if status.openaps:
        last_cob, last_mills = _openaps_last_cob(status.openaps)
        if last_cob is None or last_mills is None:
            return None
        return CobResult(cob=last_cob, source="OpenAPS", device=status.device, mills=last_mills)
    loop_cob = (status.loop or {}).get("cob")
    if loop_cob:
        return CobResult(
            cob=loop_cob.get("cob"),
            source="Loop",
            device=status.device,
            mills=parse_timestamp_ms(loop_cob.get("timestamp")) or status.mills,
        )
    return None


def last_cob_device_status(devicestatus: Optional[Sequence[DeviceStatus]], time: int) -> Optional[CobResult]:
    future_mills = time + FUTURE_TOLERANCE
    recent_mills = time - RECENCY_THRESHOLD
    cobs = []
    for status in devicestatus or []:
        if recent_mills <= status.mills <= future_mills:
            result = from_device_status(status)
            if result is not None:
                cobs.append(result)
    cobs.sort(key=lambda r: r.mills or 0)
    return cobs[-1] if cobs else None


def _activity_at(treatments: Sequence[Treatment], profile: ProfileResolver, time: int, profile_name: Optional[str]) -> float:
    return iob_from_treatments(treatments, profile, time, profile_name).activity or 0.0


def from_treatments(
    treatments: Sequence[Treatment],
    profile: ProfileResolver,
    time: int,
    profile_name: Optional[str] = None,
) -> CobResult:
    total_cob = 0.0
    last_carbs: Optional[Treatment] = None
    is_decaying = 0
    last_decayed_by = 0

    for treatment in treatments:
        if not treatment.carbs or treatment.mills >= time:
            continue
        last_carbs = treatment
        carbs_hr = profile.get_carb_absorption_rate(treatment.mills, profile_name) or DEFAULT_CARB_ABSORPTION_RATE
        decay = CarbCurves.decay(treatment.carbs, treatment.mills, carbs_hr, last_decayed_by, time)
        decayed_by = decay.decayed_by
        decays_in_hr = (decayed_by - time) / MS_PER_HOUR

        if decays_in_hr > -10:
            # insulin activity over the absorption window holds carbs back
            act_start = _activity_at(treatments, profile, last_decayed_by, profile_name)
            act_end = _activity_at(treatments, profile, decayed_by, profile_name)
            avg_activity = (act_start + act_end) / 2
            sens = profile.get_sensitivity(treatment.mills, profile_name)
            carb_ratio = profile.get_carb_ratio(treatment.mills, profile_name)
            if sens and carb_ratio:
                delayed_carbs = carb_ratio * (avg_activity * CarbCurves.LIVER_SENS_RATIO / sens)
                delay_minutes = int(round_half_up(delayed_carbs / carbs_hr * 60))
                if delay_minutes > 0:
                    decayed_by += delay_minutes * MS_PER_MINUTE
                    decays_in_hr = (decayed_by - time) / MS_PER_HOUR

        last_decayed_by = decayed_by

        if decays_in_hr > 0:
            total_cob += min(treatment.carbs, decays_in_hr * carbs_hr)
            is_decaying = decay.is_decaying
        else:
            total_cob = 0.0

    sens = profile.get_sensitivity(time, profile_name) or 0.0
    carb_ratio = profile.get_carb_ratio(time, profile_name)
    carbs_hr = profile.get_carb_absorption_rate(time, profile_name) or DEFAULT_CARB_ABSORPTION_RATE
    raw_carb_impact = (is_decaying * sens / carb_ratio * carbs_hr / 60) if carb_ratio else 0.0

    return CobResult(
        decayed_by=last_decayed_by,
        is_decaying=is_decaying,
        carbs_hr=carbs_hr,
        raw_carb_impact=raw_carb_impact,
        cob=total_cob,
        last_carbs=last_carbs,
    )


def add_display(result: CobResult) -> CobResult:
    if result.cob is None:
        return result
    display = round_half_up(result.cob, 1)
    result.display = display
    result.display_line = f"COB: {display:g}g"
    return result


def cob_total(
    treatments: Optional[Sequence[Treatment]],
    devicestatus: Optional[Sequence[DeviceStatus]],
    profile: Optional[ProfileResolver],
    time: int,
    profile_name: Optional[str] = None,
) -> CobResult:
    if profile is None or not profile.has_data():
        logger.warning("For the COB plugin to function you need a treatment profile")
        return CobResult()
    if not profile.get_sensitivity(time, profile_name) or not profile.get_carb_ratio(time, profile_name):
        logger.warning("For the COB plugin to function your treatment profile must have both sens and carbratio fields")
        return CobResult()

    treatment_cob = from_treatments(treatments, profile, time, profile_name) if treatments else None

    device_cob = last_cob_device_status(devicestatus, time)
    if device_cob is not None and isinstance(device_cob.cob, (int, float)) and time - (device_cob.mills or 0) <= TEN_MINUTES:
        device_cob.treatment_cob = treatment_cob
        return add_display(device_cob)

    if treatment_cob is None:
        return CobResult(source="Care Portal")
    result = treatment_cob.model_copy(update={"source": "Care Portal", "treatment_cob": treatment_cob.model_copy()})
    return add_display(result)


class CobPlugin(Plugin):
    name = "cob"
    label = "Carbs-on-Board"
    plugin_type = "pill-minor"
    capabilities = PROPERTIES_AND_PILL

    def set_properties(self, sbx) -> None:
        sbx.offer_property(
            "cob",
            lambda: cob_total(sbx.data.treatments, sbx.data.devicestatus, sbx.profile, sbx.time),
        )

    def update_visualisation(self, sbx) -> Optional[PillInfo]:
        prop: Optional[CobResult] = sbx.properties.get("cob")
        if prop is None or prop.cob is None:
            return None

        info = []
        if prop.treatment_cob is not None and prop.treatment_cob.cob:
            info.append({"label": "Careportal COB", "value": f"{round_half_up(prop.treatment_cob.cob, 1):g}"})
        last_carbs = prop.last_carbs or (prop.treatment_cob.last_carbs if prop.treatment_cob else None)
        if last_carbs is not None:
            when = datetime.fromtimestamp(last_carbs.mills / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")
            info.append({"label": "Last Carbs", "value": f"{last_carbs.carbs:g}g @ {when}"})

        return PillInfo(label="COB", value=f"{round_half_up(prop.cob, 1):g}g", info=info)
