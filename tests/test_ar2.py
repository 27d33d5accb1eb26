import pytest

from conftest import MINUTE, NOW, ManualClock
from glucosentry.core.settings import MonitorSettings
from glucosentry.models.levels import Level
from glucosentry.models.records import GlucoseReading
from glucosentry.services.math import ar2 as ar2_math
from glucosentry.services.notifications import AlarmEngine
from glucosentry.services.plugins.ar2 import Ar2Plugin, cone_factor
from glucosentry.services.plugins.bgnow import BgNowPlugin
from glucosentry.services.record_store import RecordStore
from glucosentry.services.sandbox import Sandbox


def _sandbox(previous, current, **settings):
    store = RecordStore()
    store.sgvs = [GlucoseReading(mills=NOW - 5 * MINUTE, mgdl=previous), GlucoseReading(mills=NOW, mgdl=current)]
    engine = AlarmEngine(clock=ManualClock(NOW))
    sbx = Sandbox(NOW, store, MonitorSettings(**settings), notifications=engine.safe_view())
    BgNowPlugin().set_properties(sbx)
    return sbx, engine


def test_flat_glucose_forecasts_flat_line():
    state = ar2_math.AR2State.seed(NOW, 140, 140)
    points = ar2_math.predict(state)

    assert [p.mgdl for p in points] == [140] * 6
    assert points[0].mills == NOW + 5 * MINUTE + 2000
    assert ar2_math.average_loss(points) == pytest.approx(0.00537, abs=1e-4)


def test_forecast_is_clamped_to_sensor_range():
    points = ar2_math.predict(ar2_math.AR2State.seed(NOW, 390, 300))
    assert max(p.mgdl for p in points) == ar2_math.BG_MAX


def test_cone_has_lower_and_upper_bounds():
    state = ar2_math.AR2State.seed(NOW, 150, 140)
    wide = ar2_math.cone(state, 2.0)
    flat = ar2_math.cone(state, 0)

    assert len(wide) == 2 * len(ar2_math.CONE_STEPS)
    assert len(flat) == len(ar2_math.CONE_STEPS)
    lower, upper = wide[-2], wide[-1]
    assert lower.mgdl < upper.mgdl
    assert upper.mills - lower.mills == 2000


def test_rising_glucose_raises_urgent_high():
    sbx, engine = _sandbox(230, 250)
    plugin = Ar2Plugin()

    plugin.set_properties(sbx)
    plugin.check_notifications(sbx)

    prop = sbx.properties["ar2"]
    assert prop.level == Level.URGENT
    assert prop.event_name == "high"
    assert prop.forecast.avg_loss > 0.1
    assert prop.display_line == "BG 15m: 280 mg/dl"
    notify = engine.notifies[0]
    assert notify.title == "Urgent, HIGH"
    assert notify.event_name == "high"
    assert notify.pushover_sound == "persistent"
    assert "predicted" in notify.debug["forecast"]


def test_falling_glucose_raises_low():
    sbx, engine = _sandbox(80, 70)
    plugin = Ar2Plugin()

    plugin.set_properties(sbx)
    plugin.check_notifications(sbx)

    prop = sbx.properties["ar2"]
    assert prop.event_name == "low"
    assert prop.forecast.avg_loss == pytest.approx(0.118, abs=0.005)
    assert engine.notifies[0].title == "Urgent, LOW"


def test_steady_glucose_is_quiet():
    sbx, engine = _sandbox(140, 140)
    plugin = Ar2Plugin()

    plugin.set_properties(sbx)
    plugin.check_notifications(sbx)

    assert sbx.properties["ar2"].level is None
    assert engine.notifies == []


def test_disabled_high_alarm_leaves_event_unnamed():
    sbx, engine = _sandbox(230, 250, alarm_high=False)
    plugin = Ar2Plugin()

    plugin.set_properties(sbx)
    plugin.check_notifications(sbx)

    assert sbx.properties["ar2"].event_name == ""
    assert engine.notifies == []


def test_no_forecast_without_delta():
    store = RecordStore()
    store.sgvs = [GlucoseReading(mills=NOW, mgdl=150)]
    sbx = Sandbox(NOW, store, MonitorSettings())
    BgNowPlugin().set_properties(sbx)

    Ar2Plugin().set_properties(sbx)

    assert sbx.properties["ar2"].forecast.predicted == []
    assert Ar2Plugin().update_visualisation(sbx) == []


def test_cone_factor_extended_setting():
    sbx, _ = _sandbox(140, 150)
    assert cone_factor(sbx) == 2.0
    sbx.extended_settings = {"cone_factor": "1.5"}
    assert cone_factor(sbx) == 1.5
    sbx.extended_settings = {"cone_factor": "wide"}
    assert cone_factor(sbx) == 2.0
    sbx.extended_settings = {"cone_factor": 0}
    assert len(Ar2Plugin().update_visualisation(sbx)) == len(ar2_math.CONE_STEPS)
