import pytest

from conftest import MINUTE, NOW, profile_doc
from glucosentry.core.settings import MonitorSettings
from glucosentry.models.levels import Level
from glucosentry.services.monitor import MonitorSession


def _payload(mgdl, **extra):
    payload = {
        "sgvs": [
            {"_id": "e1", "sgv": mgdl - 5, "date": NOW - 5 * MINUTE, "direction": "Flat"},
            {"_id": "e2", "sgv": mgdl, "date": NOW, "direction": "Flat"},
        ],
        "treatments": [{"_id": "t1", "eventType": "Meal Bolus", "mills": NOW - 30 * MINUTE, "insulin": 1, "carbs": 30}],
        "profiles": [profile_doc()],
    }
    payload.update(extra)
    return payload


@pytest.fixture
def session(clock):
    return MonitorSession(MonitorSettings(), clock=clock)


def test_tick_publishes_properties(session):
    session.receive(_payload(120))

    result = session.tick()

    assert result.time == NOW
    props = result.properties
    for name in ("bgnow", "delta", "direction", "iob", "cob", "basal", "timeago", "runtimestate"):
        assert name in props
    assert props["delta"].display == "+5"
    assert props["direction"].label == "→"
    # the bolus taken with the meal delays absorption by a minute
    assert props["cob"].cob == pytest.approx(25.5)
    assert props["basal"].totalbasal == 0.8
    assert props["timeago"].status == "current"
    assert result.events == []


def test_high_reading_raises_alarm_until_acked(session, clock):
    session.receive(_payload(300))

    first = session.tick()
    assert [e.title for e in first.events] == ["Urgent HIGH"]
    assert first.events[0].message.startswith("BG Now: 300 +5 → mg/dl")

    assert session.ack(Level.URGENT)
    clock.advance(MINUTE)
    assert session.tick().events == []

    # urgent high snoozes for the first configured interval
    clock.advance(30 * MINUTE)
    session.receive({"delta": True, "sgvs": [{"_id": "e3", "sgv": 300, "date": clock.now}]})
    assert [e.title for e in session.tick().events] == ["Urgent HIGH"]


def test_alarm_clears_when_glucose_recovers(session, clock):
    session.receive(_payload(300))
    session.tick()

    clock.advance(5 * MINUTE)
    session.receive({"delta": True, "sgvs": [{"_id": "e3", "sgv": 150, "date": NOW + 5 * MINUTE}]})
    events = session.tick().events

    assert [e.title for e in events] == ["All Clear"]
    assert events[0].clear


def test_delta_payloads_merge_into_store(session, clock):
    session.receive(_payload(120))
    clock.advance(5 * MINUTE)
    session.receive({"delta": True, "sgvs": [{"sgv": 130, "date": NOW + 5 * MINUTE}]})

    assert [s.mgdl for s in session.store.sgvs] == [115, 120, 130]
    assert session.profile.has_data()
    assert session.tick().properties["bgnow"].mean == 130


def test_replaying_the_past_is_retro_mode(session):
    session.receive(_payload(120))
    rendered = {}

    result = session.tick(NOW - 3 * MINUTE, renderer=lambda plugin, visual: rendered.setdefault(plugin.name, visual))

    assert result.time == NOW - 3 * MINUTE
    assert result.properties["bgnow"].mean == 115
    assert rendered["timeago"].label == "RETRO"
    assert session.sandbox().in_retro_mode is False


def test_renderer_gets_pills(session):
    session.receive(_payload(120))
    rendered = {}

    session.tick(renderer=lambda plugin, visual: rendered.setdefault(plugin.name, visual))

    assert rendered["iob"].label == "IOB"
    assert rendered["bgnow"].value == "+5 mg/dl"
    assert rendered["basal"].label == "BASAL"


def test_profile_switch_treatments_reach_the_resolver(session):
    switch = {"_id": "s1", "eventType": "Profile Switch", "mills": NOW - 10 * MINUTE, "profile": "Default",
              "CircadianPercentageProfile": True, "percentage": 50}
    session.receive(_payload(120, treatments=[switch]))

    assert session.profile.get_sensitivity(NOW) == pytest.approx(120)
