import logging

from conftest import NOW
from glucosentry.core.settings import MonitorSettings
from glucosentry.services.plugins.base import ALL_HOOKS, PROPERTIES, Plugin
from glucosentry.services.plugins.pipeline import PluginPipeline, server_plugins
from glucosentry.services.record_store import RecordStore
from glucosentry.services.sandbox import Sandbox


class Publisher(Plugin):
    capabilities = ALL_HOOKS

    def __init__(self, name, value, calls):
        self.name = name
        self.value = value
        self.calls = calls

    def set_properties(self, sbx):
        self.calls.append((self.name, "properties"))
        sbx.offer_property("shared", lambda: self.value)

    def check_notifications(self, sbx):
        self.calls.append((self.name, "notifications"))

    def update_visualisation(self, sbx):
        return f"pill:{self.name}"


class Broken(Plugin):
    name = "broken"
    capabilities = ALL_HOOKS

    def set_properties(self, sbx):
        raise ZeroDivisionError("boom")

    def check_notifications(self, sbx):
        raise KeyError("missing")

    def update_visualisation(self, sbx):
        raise ValueError("bad")


class PropertiesOnly(Plugin):
    name = "quiet"
    capabilities = PROPERTIES

    def __init__(self, calls):
        self.calls = calls

    def set_properties(self, sbx):
        self.calls.append((self.name, "properties"))
        sbx.offer_property("settings_seen", lambda: dict(sbx.extended_settings))


def _setup(plugins, enable=("alpha", "beta", "broken", "quiet"), **settings):
    settings = MonitorSettings(enable=list(enable), **settings)
    sbx = Sandbox(NOW, RecordStore(), settings)
    return PluginPipeline(plugins, settings), sbx


def test_first_registered_plugin_wins_contested_property():
    calls = []
    pipeline, sbx = _setup([Publisher("alpha", "from alpha", calls), Publisher("beta", "from beta", calls)])

    pipeline.set_properties(sbx)

    assert sbx.properties["shared"] == "from alpha"
    assert calls == [("alpha", "properties"), ("beta", "properties")]


def test_failing_plugin_does_not_stop_the_cycle(caplog):
    calls = []
    pipeline, sbx = _setup([Broken(), Publisher("alpha", 1, calls)])

    with caplog.at_level(logging.ERROR):
        pipeline.set_properties(sbx)
        pipeline.check_notifications(sbx)

    assert calls == [("alpha", "properties"), ("alpha", "notifications")]
    failures = [r for r in caplog.records if r.getMessage() == "Plugin hook failed"]
    assert [r.plugin for r in failures] == ["broken", "broken"]
    assert [r.hook for r in failures] == ["properties", "notifications"]


def test_hooks_are_dispatched_by_capability():
    calls = []
    pipeline, sbx = _setup([PropertiesOnly(calls)])

    pipeline.set_properties(sbx)
    pipeline.check_notifications(sbx)
    pipeline.update_visualisations(sbx, lambda plugin, visual: calls.append((plugin.name, visual)))

    assert calls == [("quiet", "properties")]


def test_disabled_plugins_are_skipped():
    calls = []
    pipeline, sbx = _setup([Publisher("alpha", 1, calls), Publisher("beta", 2, calls)], enable=("beta",))

    pipeline.set_properties(sbx)

    assert calls == [("beta", "properties")]
    assert [p.name for p in pipeline.enabled_plugins()] == ["beta"]


def test_renderer_receives_visuals_and_failures_are_isolated():
    rendered = []
    pipeline, sbx = _setup([Broken(), Publisher("alpha", 1, [])])

    pipeline.update_visualisations(sbx, lambda plugin, visual: rendered.append((plugin.name, visual)))

    assert rendered == [("alpha", "pill:alpha")]


def test_each_plugin_sees_its_own_extended_settings():
    calls = []
    pipeline, sbx = _setup([PropertiesOnly(calls)], extended_settings={"quiet": {"level": 3}, "other": {"x": 1}})

    pipeline.set_properties(sbx)

    assert sbx.properties["settings_seen"] == {"level": 3}


def test_server_plugins_registration_order():
    names = [p.name for p in server_plugins()]
    assert names[:4] == ["bgnow", "rawbg", "direction", "ar2"]
    assert names[-1] == "runtimestate"
    assert len(names) == len(set(names))
    pipeline = PluginPipeline.server_defaults(MonitorSettings())
    enabled = [p.name for p in pipeline.enabled_plugins()]
    assert "simplealarms" in enabled
    assert "ar2" not in enabled
    assert "boluswizardpreview" not in enabled


def test_base_hooks_are_no_ops():
    plugin = Plugin()
    sbx = Sandbox(NOW, RecordStore(), MonitorSettings())

    assert plugin.set_properties(sbx) is None
    assert plugin.check_notifications(sbx) is None
    assert plugin.update_visualisation(sbx) is None
    assert sbx.properties == {}
