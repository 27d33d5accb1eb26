import json

import pytest

from glucosentry.core.constants import DEFAULT_FEATURES
from glucosentry.core.settings import MonitorSettings, coerce_setting, load_settings
from glucosentry.models.levels import Level
from glucosentry.models.notifications import Notify


def test_defaults_enable_simple_alarms_and_default_features():
    settings = MonitorSettings()
    assert settings.alarm_types == ["simple"]
    assert settings.is_enabled("simplealarms")
    assert not settings.is_enabled("ar2")
    for feature in DEFAULT_FEATURES:
        assert settings.is_enabled(feature)


def test_enabling_ar2_switches_to_predictive_alarms():
    settings = MonitorSettings(enable="ar2 rawbg")
    assert settings.alarm_types == ["predict"]
    assert settings.is_enabled("ar2")
    assert settings.is_enabled("rawbg")
    assert not settings.is_enabled("simplealarms")


def test_disable_wins_over_defaults():
    settings = MonitorSettings(disable=["iob", "cob"])
    assert not settings.is_enabled("iob")
    assert not settings.is_enabled(["iob", "cob"])
    assert settings.is_enabled(["iob", "bgnow"])


def test_units_are_normalised():
    assert MonitorSettings(units="mmol/L").is_mmol
    assert MonitorSettings(units="mmol").units == "mmol"
    assert MonitorSettings(units="something").units == "mg/dl"


def test_mmol_thresholds_are_converted():
    settings = MonitorSettings(thresholds={"bgHigh": 14, "bgTargetTop": 10, "bgTargetBottom": 4, "bgLow": 3})
    t = settings.thresholds
    assert (t.bg_high, t.bg_target_top, t.bg_target_bottom, t.bg_low) == (252, 180, 72, 54)


def test_inconsistent_thresholds_are_corrected(caplog):
    settings = MonitorSettings(thresholds={"bgTargetTop": 100, "bgTargetBottom": 150})
    assert settings.thresholds.bg_target_bottom == 99
    assert "bgTargetBottom must be below bgTargetTop" in caplog.text


def test_alarm_event_helpers():
    settings = MonitorSettings(alarm_high=False)
    high_warn = Notify(level=Level.WARN, event_name="high", title="t", message="m", plugin="p")
    urgent_high = Notify(level=Level.URGENT, event_name="high", title="t", message="m", plugin="p")
    low_warn = Notify(level=Level.WARN, event_name="low", title="t", message="m", plugin="p")
    other = Notify(level=Level.WARN, event_name="bwp", title="t", message="m", plugin="p")

    assert not settings.is_alarm_event_enabled(high_warn)
    assert settings.is_alarm_event_enabled(urgent_high)
    assert settings.is_alarm_event_enabled(other)
    assert settings.snooze_first_mins_for_alarm_event(urgent_high) == 30
    assert settings.snooze_first_mins_for_alarm_event(low_warn) == 15
    assert settings.snooze_mins_for_alarm_event(high_warn) == [30, 60, 90, 120]


def test_coerce_setting():
    assert coerce_setting("on") is True
    assert coerce_setting("off") is False
    assert coerce_setting("2") == 2
    assert coerce_setting("0.5") == 0.5
    assert coerce_setting("1 2 3") == "1 2 3"


def test_load_settings_merges_file_and_env(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "nightscout": {"base_url": "https://file.example.com", "timeout_seconds": 20},
                "monitor": {
                    "units": "mmol",
                    "thresholds": {"bgHigh": 250},
                    "extendedSettings": {"ar2": {"cone_factor": 1}},
                },
            }
        )
    )
    environ = {
        "NIGHTSCOUT_URL": "https://env.example.com",
        "API_SECRET": "secret-secret",
        "BG_LOW": "60",
        "ENABLE": "ar2",
        "ALARM_HIGH": "off",
        "TIMEAGO_ENABLE_ALERTS": "on",
        "AR2_CONE_FACTOR": "1.5",
    }

    settings = load_settings(environ=environ, config_path=config_path)

    assert str(settings.nightscout.base_url).startswith("https://env.example.com")
    assert settings.nightscout.api_secret == "secret-secret"
    assert settings.nightscout.timeout_seconds == 20
    monitor = settings.monitor
    assert monitor.is_mmol
    assert monitor.thresholds.bg_high == 250
    assert monitor.thresholds.bg_low == 60
    assert monitor.alarm_high is False
    assert monitor.is_enabled("ar2")
    assert monitor.plugin_settings("ar2") == {"cone_factor": 1.5}
    assert monitor.plugin_settings("timeago") == {"enable_alerts": True}


def test_load_settings_without_file_uses_defaults(tmp_path):
    settings = load_settings(environ={}, config_path=tmp_path / "missing.json")
    assert settings.nightscout.base_url is None
    assert settings.monitor.units == "mg/dl"


def test_invalid_configuration_raises_runtime_error(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"monitor": {"retentionMs": -5}}))
    with pytest.raises(RuntimeError):
        load_settings(environ={}, config_path=config_path)


def test_invalid_json_raises_runtime_error(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text("{not json")
    with pytest.raises(RuntimeError):
        load_settings(environ={}, config_path=config_path)
