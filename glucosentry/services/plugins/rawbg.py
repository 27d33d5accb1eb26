import math
from typing import Any, Optional

from glucosentry.models.properties import PillInfo, RawBgResult
from glucosentry.models.records import Calibration, GlucoseReading
from glucosentry.services.plugins.base import PROPERTIES_AND_PILL, Plugin
from glucosentry.utils.units import format_number, round_half_up

NOISE_LABELS = {0: "---", 1: "Clean", 2: "Light", 3: "Medium", 4: "Heavy"}
# Below this the sensor value is an error code, raw is computed from unfiltered only
RAW_ONLY_BELOW = 40


def _int_or_zero(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _float_or_zero(value: Any) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if math.isnan(result) else result


def calc(sgv: GlucoseReading, cal: Calibration, display: str = "unsmoothed") -> int:
    """
    Raw glucose from sensor counts and the last calibration.

    ``display`` selects the formula: ``unfiltered`` and ``filtered`` use the
    respective count directly, anything else scales unfiltered by the
    filtered/sgv ratio.
    """
    unfiltered = _int_or_zero(sgv.unfiltered)
    filtered = _int_or_zero(sgv.filtered)
    scale = _float_or_zero(cal.scale)
    intercept = _float_or_zero(cal.intercept)
    slope = _float_or_zero(cal.slope)

    if slope == 0 or unfiltered == 0 or scale == 0:
        return 0

    mgdl = sgv.mgdl or 0
    if filtered == 0 or mgdl < RAW_ONLY_BELOW or display == "unfiltered":
        return int(round_half_up(scale * (unfiltered - intercept) / slope))

    if display == "filtered":
        return int(round_half_up(scale * (filtered - intercept) / slope))

    ratio = scale * (filtered - intercept) / slope / mgdl
    if ratio == 0:
        return 0
    return int(round_half_up(scale * (unfiltered - intercept) / slope / ratio))


def noise_code_to_display(mgdl: Optional[float], noise: Optional[float]) -> str:
    if noise is not None:
        label = NOISE_LABELS.get(math.floor(noise))
        if label is not None:
            return label
    if mgdl is not None and mgdl < RAW_ONLY_BELOW:
        return "Heavy"
    return "~~~"


def show_raw_bgs(mgdl: Optional[float], noise: Optional[float], cal: Optional[Calibration], sbx) -> bool:
    if cal is None or not sbx.settings.is_enabled("rawbg"):
        return False
    show = sbx.settings.show_raw_bg
    if show == "always":
        return True
    return show == "noise" and ((noise or 0) >= 2 or (mgdl or 0) < RAW_ONLY_BELOW)


class RawBgPlugin(Plugin):
    name = "rawbg"
    label = "Raw BG"
    plugin_type = "bg-status"
    capabilities = PROPERTIES_AND_PILL

    def set_properties(self, sbx) -> None:
        sbx.offer_property("rawbg", lambda: self._raw_bg(sbx))

    def _raw_bg(self, sbx) -> Optional[RawBgResult]:
        current_sgv = sbx.last_sgv_entry()
        current_cal = sbx.data.last_calibration()
        if sbx.in_retro_mode and not sbx.is_current(current_sgv):
            return None
        if current_sgv is None or current_cal is None:
            return None

        mgdl = calc(current_sgv, current_cal, sbx.extended_settings.get("display", "unsmoothed"))
        noise_label = noise_code_to_display(current_sgv.mgdl, current_sgv.noise)
        scaled = format_number(sbx.scale_mgdl(mgdl))
        return RawBgResult(
            mgdl=mgdl,
            noise_label=noise_label,
            sgv=current_sgv,
            cal=current_cal,
            display_line=f"Raw BG: {scaled} {sbx.units_label} {noise_label}",
        )

    def update_visualisation(self, sbx) -> Optional[PillInfo]:
        prop: Optional[RawBgResult] = sbx.properties.get("rawbg")
        if prop is None or not prop.mgdl or prop.sgv is None:
            return None
        if not show_raw_bgs(prop.sgv.mgdl, prop.sgv.noise, prop.cal, sbx):
            return None
        return PillInfo(label=prop.noise_label, value=format_number(sbx.scale_mgdl(prop.mgdl)))
