from glucosentry.models.properties import RuntimeStateResult
from glucosentry.services.plugins.base import PROPERTIES, Plugin


class RuntimeStatePlugin(Plugin):
    name = "runtimestate"
    label = "Runtime state"
    plugin_type = "fake"
    capabilities = PROPERTIES

    def set_properties(self, sbx) -> None:
        sbx.offer_property("runtimestate", lambda: RuntimeStateResult(state=sbx.runtime_state))
