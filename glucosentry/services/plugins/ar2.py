import logging
from typing import Any, Optional

from glucosentry.core.constants import TEN_MINUTES
from glucosentry.models.levels import Level, to_display
from glucosentry.models.properties import Ar2Forecast, Ar2Result, ForecastPoint
from glucosentry.services.math import ar2 as ar2_math
from glucosentry.services.plugins.base import ALL_HOOKS, Plugin
from glucosentry.utils.units import format_number

logger = logging.getLogger(__name__)

WARN_THRESHOLD = 0.05
URGENT_THRESHOLD = 0.1
DEFAULT_CONE_FACTOR = 2.0
# forecast index of the point 20 minutes ahead
IN_20_MINS = 4
IN_15_MINS = 2


def ok_to_forecast(sbx) -> bool:
    bgnow = sbx.properties.get("bgnow")
    delta = sbx.properties.get("delta")
    if bgnow is None or delta is None or bgnow.mean is None:
        return False
    return bgnow.mean >= ar2_math.BG_MIN and bool(delta.mean5_mins_ago)


def init_state(sbx) -> ar2_math.AR2State:
    bgnow = sbx.properties["bgnow"]
    delta = sbx.properties["delta"]
    return ar2_math.AR2State.seed(bgnow.mills or sbx.time, bgnow.mean, delta.mean5_mins_ago)


def forecast(sbx) -> Ar2Forecast:
    if not ok_to_forecast(sbx):
        return Ar2Forecast()
    predicted = ar2_math.predict(init_state(sbx))
    return Ar2Forecast(predicted=predicted, avg_loss=ar2_math.average_loss(predicted))


def cone_factor(sbx) -> float:
    try:
        value = float(sbx.extended_settings.get("cone_factor", DEFAULT_CONE_FACTOR))
    except (TypeError, ValueError):
        return DEFAULT_CONE_FACTOR
    return DEFAULT_CONE_FACTOR if value != value or value < 0 else value


def forecast_cone(sbx) -> list[ForecastPoint]:
    if not ok_to_forecast(sbx):
        return []
    return ar2_math.cone(init_state(sbx), cone_factor(sbx))


def scaled_points(points: list[ForecastPoint], sbx) -> list[float]:
    return [sbx.scale_mgdl(p.mgdl) for p in points]


def select_event_type(prediction: Ar2Forecast, sbx) -> str:
    predicted = scaled_points(prediction.predicted, sbx)
    if len(predicted) <= IN_20_MINS:
        return ""
    in_20_mins = predicted[IN_20_MINS]
    thresholds = sbx.settings.thresholds
    if sbx.settings.alarm_high and in_20_mins > sbx.scale_mgdl(thresholds.bg_target_top):
        return "high"
    if sbx.settings.alarm_low and in_20_mins < sbx.scale_mgdl(thresholds.bg_target_bottom):
        return "low"
    return ""


def check_forecast(prediction: Ar2Forecast, sbx) -> tuple[Optional[Level], str]:
    if prediction.avg_loss > URGENT_THRESHOLD:
        level = Level.URGENT
    elif prediction.avg_loss > WARN_THRESHOLD:
        level = Level.WARN
    else:
        return None, ""
    return level, select_event_type(prediction, sbx)


def build_title(prop: Ar2Result, sbx) -> str:
    range_label = prop.event_name.upper() if prop.event_name else "Check BG"
    level = to_display(prop.level) if prop.level is not None else "(none)"
    title = f"{level}, {range_label}"

    sgv = sbx.last_scaled_sgv()
    thresholds = sbx.settings.thresholds
    if sgv is not None and sbx.scale_mgdl(thresholds.bg_target_bottom) < sgv < sbx.scale_mgdl(thresholds.bg_target_top):
        return f"{title} predicted"
    return title


def pushover_sound(prop: Ar2Result) -> Optional[str]:
    if prop.level == Level.URGENT:
        return "persistent"
    if prop.event_name == "low":
        return "falling"
    if prop.event_name == "high":
        return "climb"
    return None


def build_debug(prop: Ar2Result, sbx) -> dict[str, Any]:
    predicted = ", ".join(format_number(v) for v in scaled_points(prop.forecast.predicted, sbx))
    return {"forecast": {"avg_loss": prop.forecast.avg_loss, "predicted": predicted}}


class Ar2Plugin(Plugin):
    name = "ar2"
    label = "AR2"
    plugin_type = "forecast"
    capabilities = ALL_HOOKS

    def set_properties(self, sbx) -> None:
        sbx.offer_property("ar2", lambda: self._result(sbx))

    def _result(self, sbx) -> Ar2Result:
        prediction = forecast(sbx)
        level, event_name = check_forecast(prediction, sbx)
        scaled = scaled_points(prediction.predicted, sbx)
        display_line = None
        if len(scaled) > IN_15_MINS:
            display_line = f"BG 15m: {format_number(scaled[IN_15_MINS])} {sbx.units_label}"
        return Ar2Result(forecast=prediction, level=level, event_name=event_name, display_line=display_line)

    def check_notifications(self, sbx) -> None:
        last_mills = sbx.last_sgv_mills()
        if last_mills is None or sbx.time - last_mills > TEN_MINUTES:
            return

        prop: Optional[Ar2Result] = sbx.properties.get("ar2")
        if prop is None or prop.level is None or prop.event_name not in ("high", "low"):
            return

        sbx.notifications.request_notify(
            level=prop.level,
            title=build_title(prop, sbx),
            message=sbx.build_default_message(),
            event_name=prop.event_name,
            pushover_sound=pushover_sound(prop),
            plugin=self.name,
            debug=build_debug(prop, sbx),
        )

    def update_visualisation(self, sbx) -> list[ForecastPoint]:
        """Forecast points for the chart; the caller draws them."""
        return forecast_cone(sbx)
