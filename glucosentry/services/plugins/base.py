from enum import Enum
from typing import Optional

from glucosentry.models.properties import ForecastPoint, PillInfo


class Capability(str, Enum):
    PROPERTIES = "properties"
    NOTIFICATIONS = "notifications"
    VISUALISATION = "visualisation"


class Plugin:
    """
    One computation unit of the pipeline. Subclasses declare which hooks they
    implement through ``capabilities``; the pipeline only calls those.
    """

    name: str = ""
    label: str = ""
    plugin_type: str = "pill-minor"
    capabilities: frozenset[Capability] = frozenset()

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def set_properties(self, sbx) -> None:
        return None

    def check_notifications(self, sbx) -> None:
        return None

    def update_visualisation(self, sbx) -> Optional[PillInfo | list[ForecastPoint]]:
        """Pill info for status plugins, forecast points for forecast plugins."""
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


PROPERTIES = frozenset({Capability.PROPERTIES})
PROPERTIES_AND_PILL = frozenset({Capability.PROPERTIES, Capability.VISUALISATION})
ALL_HOOKS = frozenset({Capability.PROPERTIES, Capability.NOTIFICATIONS, Capability.VISUALISATION})
