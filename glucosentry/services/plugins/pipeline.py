import logging
from typing import Any, Callable, Optional, Sequence

from glucosentry.core.settings import MonitorSettings
from glucosentry.services.plugins.ar2 import Ar2Plugin
from glucosentry.services.plugins.basal import BasalPlugin
from glucosentry.services.plugins.base import Capability, Plugin
from glucosentry.services.plugins.bgnow import BgNowPlugin
from glucosentry.services.plugins.boluswizardpreview import BolusWizardPreviewPlugin
from glucosentry.services.plugins.cob import CobPlugin
from glucosentry.services.plugins.direction import DirectionPlugin
from glucosentry.services.plugins.errorcodes import ErrorCodesPlugin
from glucosentry.services.plugins.iob import IobPlugin
from glucosentry.services.plugins.rawbg import RawBgPlugin
from glucosentry.services.plugins.runtimestate import RuntimeStatePlugin
from glucosentry.services.plugins.simplealarms import SimpleAlarmsPlugin
from glucosentry.services.plugins.timeago import TimeAgoPlugin

logger = logging.getLogger(__name__)

Renderer = Callable[[Plugin, Any], None]


def server_plugins() -> list[Plugin]:
    """Every plugin, in registration order; earlier plugins win contested properties."""
    return [
        BgNowPlugin(),
        RawBgPlugin(),
        DirectionPlugin(),
        Ar2Plugin(),
        SimpleAlarmsPlugin(),
        ErrorCodesPlugin(),
        IobPlugin(),
        CobPlugin(),
        BolusWizardPreviewPlugin(),
        BasalPlugin(),
        TimeAgoPlugin(),
        RuntimeStatePlugin(),
    ]


class PluginPipeline:
    def __init__(self, plugins: Sequence[Plugin], settings: MonitorSettings) -> None:
        self.plugins = list(plugins)
        self.settings = settings

    @classmethod
    def server_defaults(cls, settings: MonitorSettings) -> "PluginPipeline":
        return cls(server_plugins(), settings)

    def enabled_plugins(self) -> list[Plugin]:
        return [plugin for plugin in self.plugins if self.settings.is_enabled(plugin.name)]

    def _each(self, capability: Capability, sbx, hook: Callable[[Plugin, Any], Any]) -> None:
        for plugin in self.enabled_plugins():
            if not plugin.supports(capability):
                continue
            try:
                hook(plugin, sbx.with_extended_settings(plugin))
            except Exception:
                logger.error(
                    "Plugin hook failed",
                    extra={"plugin": plugin.name, "hook": capability.value},
                    exc_info=True,
                )

    def set_properties(self, sbx) -> None:
        self._each(Capability.PROPERTIES, sbx, lambda plugin, view: plugin.set_properties(view))

    def check_notifications(self, sbx) -> None:
        self._each(Capability.NOTIFICATIONS, sbx, lambda plugin, view: plugin.check_notifications(view))

    def update_visualisations(self, sbx, renderer: Optional[Renderer] = None) -> None:
        def render(plugin: Plugin, view) -> None:
            visual = plugin.update_visualisation(view)
            if renderer is not None and visual is not None:
                renderer(plugin, visual)

        self._each(Capability.VISUALISATION, sbx, render)
