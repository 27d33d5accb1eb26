from conftest import MINUTE, NOW
from glucosentry.core.settings import MonitorSettings
from glucosentry.models.records import GlucoseReading
from glucosentry.services.plugins.bgnow import BgNowPlugin, fill_buckets
from glucosentry.services.record_store import RecordStore
from glucosentry.services.sandbox import Sandbox


def _sandbox(readings, units="mg/dl"):
    store = RecordStore()
    store.sgvs = [GlucoseReading(mills=mills, mgdl=mgdl) for mills, mgdl in readings]
    return Sandbox(NOW, store, MonitorSettings(units=units))


def test_delta_between_consecutive_buckets():
    sbx = _sandbox([(NOW - 5 * MINUTE, 230), (NOW, 250)])

    BgNowPlugin().set_properties(sbx)

    bgnow = sbx.properties["bgnow"]
    delta = sbx.properties["delta"]
    assert bgnow.mean == 250
    assert bgnow.mills == NOW
    assert delta.mgdl == 20
    assert delta.display == "+20"
    assert not delta.interpolated
    assert delta.previous.mean == 230
    assert delta.times == {"recent": NOW, "previous": NOW - 5 * MINUTE}


def test_falling_delta_has_no_plus_sign():
    sbx = _sandbox([(NOW - 5 * MINUTE, 120), (NOW, 112)])
    BgNowPlugin().set_properties(sbx)
    assert sbx.properties["delta"].display == "-8"


def test_long_gap_is_interpolated_back_to_five_minutes():
    sbx = _sandbox([(NOW - 15 * MINUTE, 100), (NOW, 130)])
    plugin = BgNowPlugin()

    plugin.set_properties(sbx)
    pill = plugin.update_visualisation(sbx)

    delta = sbx.properties["delta"]
    assert delta.interpolated
    assert delta.elapsed_mins == 15
    assert delta.mean5_mins_ago == 120
    assert delta.display == "+10"
    assert pill.value == "+10 * mg/dl"
    assert {"label": "Elapsed Time", "value": "15 mins"} in pill.info
    assert {"label": "Absolute Delta", "value": "30 mg/dl"} in pill.info


def test_mmol_delta_is_rounded_to_one_decimal():
    sbx = _sandbox([(NOW - 5 * MINUTE, 180), (NOW, 198)], units="mmol")
    BgNowPlugin().set_properties(sbx)
    delta = sbx.properties["delta"]
    assert delta.mgdl == 18
    assert delta.display == "+1"


def test_buckets_average_and_separate_sensor_errors():
    sbx = _sandbox([(NOW - 2 * MINUTE, 5), (NOW - MINUTE, 100), (NOW, 110)])

    buckets = fill_buckets(sbx)

    first = buckets[0]
    assert first.mean == 105
    assert first.last == 110
    assert [e.mgdl for e in first.errors] == [5]
    assert all(b.is_empty for b in buckets[1:])


def test_future_readings_are_ignored():
    sbx = _sandbox([(NOW - 5 * MINUTE, 100), (NOW, 110), (NOW + 5 * MINUTE, 300)])
    BgNowPlugin().set_properties(sbx)
    assert sbx.properties["bgnow"].mean == 110


def test_without_readings_nothing_is_published():
    sbx = _sandbox([])
    plugin = BgNowPlugin()

    plugin.set_properties(sbx)
    pill = plugin.update_visualisation(sbx)

    assert "bgnow" not in sbx.properties
    assert "delta" not in sbx.properties
    assert pill.value == ""
