from typing import NamedTuple, Optional

from glucosentry.core.constants import BG_SENSOR_ERROR_MAX, TEN_MINUTES
from glucosentry.models.levels import Level, to_display
from glucosentry.services.plugins.base import Capability, Plugin


class ThresholdResult(NamedTuple):
    level: Level
    title: str
    event_name: str
    pushover_sound: str


def compare_bg_to_thresholds(scaled_sgv: float, sbx) -> Optional[ThresholdResult]:
    settings = sbx.settings
    thresholds = settings.thresholds
    if settings.alarm_urgent_high and scaled_sgv > sbx.scale_mgdl(thresholds.bg_high):
        return ThresholdResult(Level.URGENT, f"{to_display(Level.URGENT)} HIGH", "high", "persistent")
    if settings.alarm_high and scaled_sgv > sbx.scale_mgdl(thresholds.bg_target_top):
        return ThresholdResult(Level.WARN, f"{to_display(Level.WARN)} HIGH", "high", "climb")
    if settings.alarm_urgent_low and scaled_sgv < sbx.scale_mgdl(thresholds.bg_low):
        return ThresholdResult(Level.URGENT, f"{to_display(Level.URGENT)} LOW", "low", "persistent")
    if settings.alarm_low and scaled_sgv < sbx.scale_mgdl(thresholds.bg_target_bottom):
        return ThresholdResult(Level.WARN, f"{to_display(Level.WARN)} LOW", "low", "falling")
    return None


class SimpleAlarmsPlugin(Plugin):
    name = "simplealarms"
    label = "Simple Alarms"
    plugin_type = "notification"
    capabilities = frozenset({Capability.NOTIFICATIONS})

    def check_notifications(self, sbx) -> None:
        last = sbx.last_sgv_entry()
        if last is None or last.mgdl is None or last.mgdl <= BG_SENSOR_ERROR_MAX:
            return
        if sbx.time - last.mills >= TEN_MINUTES:
            return
        scaled = sbx.scale_entry(last)
        if not scaled:
            return

        result = compare_bg_to_thresholds(scaled, sbx)
        if result is None:
            return
        sbx.notifications.request_notify(
            level=result.level,
            title=result.title,
            message=sbx.build_default_message(),
            event_name=result.event_name,
            plugin=self.name,
            pushover_sound=result.pushover_sound,
            debug={"last_sgv": scaled, "thresholds": sbx.settings.thresholds.model_dump()},
        )
