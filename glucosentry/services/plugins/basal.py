from typing import Optional

from glucosentry.models.properties import PillInfo, TempBasalResult
from glucosentry.services.plugins.base import PROPERTIES_AND_PILL, Plugin
from glucosentry.utils.units import format_number


def temp_marker(result: TempBasalResult) -> str:
    if result.treatment is not None and result.combobolustreatment is not None:
        return "T+C:"
    if result.treatment is not None:
        return "T:"
    if result.combobolustreatment is not None:
        return "C:"
    return ""


class BasalPlugin(Plugin):
    name = "basal"
    label = "Basal Profile"
    plugin_type = "pill-minor"
    capabilities = PROPERTIES_AND_PILL

    def set_properties(self, sbx) -> None:
        sbx.offer_property("basal", lambda: self._current(sbx))

    def _current(self, sbx) -> Optional[TempBasalResult]:
        if sbx.profile is None or not sbx.profile.has_data():
            return None
        # the resolver caches its result; decorate a copy
        result = sbx.profile.get_temp_basal(sbx.time).model_copy()
        if result.totalbasal is None:
            return None
        result.display_line = f"Basal: {temp_marker(result)}{result.totalbasal:.3f}U"
        return result

    def update_visualisation(self, sbx) -> Optional[PillInfo]:
        prop: Optional[TempBasalResult] = sbx.properties.get("basal")
        if prop is None:
            return None

        info = [{"label": "Current basal", "value": f"{format_number(prop.basal)} U"}]
        treatment = prop.treatment
        if treatment is not None:
            if treatment.percent:
                sign = "+" if treatment.percent > 0 else ""
                value = f"{sign}{format_number(treatment.percent)}%"
            elif treatment.absolute is not None:
                value = f"{format_number(treatment.absolute)}U/h"
            else:
                value = "?"
            info.append({"label": "Active temp basal", "value": value})
        if prop.combobolustreatment is not None:
            info.append({"label": "Active combo bolus", "value": f"{format_number(prop.combobolusbasal)}U/h"})

        return PillInfo(label="BASAL", value=f"{temp_marker(prop)}{prop.totalbasal:.3f}U", info=info)
