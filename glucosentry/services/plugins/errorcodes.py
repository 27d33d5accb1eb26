from typing import Any

from glucosentry.core.constants import BG_SENSOR_ERROR_MAX, TEN_MINUTES
from glucosentry.models.levels import Level
from glucosentry.services.plugins.base import Capability, Plugin

GROUP = "CGM Error Code"

CODE_DISPLAY = {
    1: "?SN",  # sensor not active
    2: "?MD",  # minimal deviation
    3: "?NA",  # no antenna
    5: "?NC",  # sensor not calibrated
    6: "?CD",  # counts deviation
    9: "?AD",  # absolute deviation
    10: "???",  # power deviation
    12: "?RF",  # bad RF
}

CODE_PUSHOVER_SOUND = {5: "intermission", 9: "alien", 10: "alien"}

DEFAULT_INFO_CODES = "1 2 3 4 5 6 7 8"
DEFAULT_URGENT_CODES = "9 10"


def to_display(code: int) -> str:
    return CODE_DISPLAY.get(code, f"{code}??")


def build_mapping(extended_settings: dict[str, Any]) -> dict[int, Level]:
    mapping: dict[int, Level] = {}

    def add(value: Any, level: Level) -> None:
        if value is None or value is False:
            return
        for part in str(value).split():
            try:
                mapping[int(float(part))] = level
            except ValueError:
                continue

    add(extended_settings.get("info") or DEFAULT_INFO_CODES, Level.INFO)
    add(extended_settings.get("warn") or None, Level.WARN)
    add(extended_settings.get("urgent") or DEFAULT_URGENT_CODES, Level.URGENT)
    return mapping


class ErrorCodesPlugin(Plugin):
    name = "errorcodes"
    label = "Dexcom Error Codes"
    plugin_type = "notification"
    capabilities = frozenset({Capability.NOTIFICATIONS})

    def check_notifications(self, sbx) -> None:
        last = sbx.last_sgv_entry()
        if last is None or last.mgdl is None:
            return
        if sbx.time - last.mills >= TEN_MINUTES or last.mgdl >= BG_SENSOR_ERROR_MAX:
            return

        code = int(last.mgdl)
        level = build_mapping(sbx.extended_settings).get(code)
        if level is None:
            return
        sbx.notifications.request_notify(
            level=level,
            title="CGM Error Code",
            message=to_display(code),
            plugin=self.name,
            pushover_sound=CODE_PUSHOVER_SOUND.get(code),
            group=GROUP,
            debug={"last_sgv": last.model_dump(by_alias=True)},
        )
