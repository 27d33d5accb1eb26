from typing import Optional

from glucosentry.core.constants import BG_SENSOR_ERROR_MAX
from glucosentry.models.properties import DirectionResult, PillInfo
from glucosentry.models.records import GlucoseReading
from glucosentry.services.plugins.base import PROPERTIES_AND_PILL, Plugin

DIRECTION_CHARS = {
    "NONE": "⇼",
    "TripleUp": "⤊",
    "DoubleUp": "⇈",
    "SingleUp": "↑",
    "FortyFiveUp": "↗",
    "Flat": "→",
    "FortyFiveDown": "↘",
    "SingleDown": "↓",
    "DoubleDown": "⇊",
    "TripleDown": "⤋",
    "NOT COMPUTABLE": "-",
    "RATE OUT OF RANGE": "⇕",
}


def direction_to_char(direction: Optional[str]) -> str:
    if not direction:
        return "-"
    return DIRECTION_CHARS.get(direction, "-")


def char_to_entity(char: str) -> str:
    return f"&#{ord(char[0])};" if char else ""


def info(sgv: GlucoseReading) -> DirectionResult:
    char = direction_to_char(sgv.direction)
    return DirectionResult(value=sgv.direction, label=char, entity=char_to_entity(char))


class DirectionPlugin(Plugin):
    name = "direction"
    label = "BG direction"
    plugin_type = "bg-status"
    capabilities = PROPERTIES_AND_PILL

    def set_properties(self, sbx) -> None:
        def current_direction() -> Optional[DirectionResult]:
            last = sbx.last_sgv_entry()
            if not sbx.is_current(last):
                return None
            return info(last)

        sbx.offer_property("direction", current_direction)

    def update_visualisation(self, sbx) -> Optional[PillInfo]:
        prop: Optional[DirectionResult] = sbx.properties.get("direction")
        if prop is None or not prop.value:
            return None
        last_mgdl = sbx.last_sgv_mgdl()
        if last_mgdl is not None and last_mgdl < BG_SENSOR_ERROR_MAX:
            return PillInfo(label="✖", value="CGM ERROR")
        return PillInfo(label=prop.label, value=prop.value)
