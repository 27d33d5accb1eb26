import pytest

from conftest import NOW, ManualClock
from glucosentry.core.settings import MonitorSettings
from glucosentry.models.levels import Level
from glucosentry.services.notifications import AlarmEngine
from glucosentry.utils.times import mins


def _notify(level=Level.URGENT, **fields):
    values = {"level": level, "title": "Urgent HIGH", "message": "BG Now: 300", "plugin": "simplealarms",
              "event_name": "high"}
    values.update(fields)
    return values


@pytest.fixture
def engine(clock):
    return AlarmEngine(clock=clock)


def _cycle(engine, *notifies, snoozes=(), now=None):
    engine.init_requests()
    for notify in notifies:
        engine.request_notify(notify)
    for snooze in snoozes:
        engine.request_snooze(snooze)
    return engine.process(now)


def test_new_alarm_is_emitted(engine):
    events = _cycle(engine, _notify())

    assert len(events) == 1
    event = events[0]
    assert event.level == Level.URGENT
    assert event.title == "Urgent HIGH"
    assert event.emitted_at == NOW
    assert engine.get_alarm(Level.URGENT).last_emit_time == NOW


def test_ack_silences_until_the_window_ends(engine, clock):
    _cycle(engine, _notify())
    assert engine.ack(Level.URGENT, "default", 60_000)

    clock.advance(30_000)
    assert _cycle(engine, _notify()) == []

    clock.advance(31_000)
    events = _cycle(engine, _notify())
    assert [e.title for e in events] == ["Urgent HIGH"]


def test_second_ack_inside_window_is_rejected(engine, caplog):
    assert engine.ack(Level.WARN, "default", 60_000)
    assert not engine.ack(Level.WARN, "default", 60_000)
    assert "already been snoozed" in caplog.text


def test_urgent_ack_also_silences_warnings(engine, clock):
    engine.ack(Level.URGENT, "default", int(mins(10).msecs))
    clock.advance(60_000)
    assert _cycle(engine, _notify(level=Level.WARN, title="Warning HIGH")) == []


def test_alarm_clears_itself_when_condition_goes_away(engine, clock):
    _cycle(engine, _notify())
    clock.advance(300_000)

    events = _cycle(engine)

    assert len(events) == 1
    assert events[0].clear
    assert events[0].level == Level.NONE
    assert events[0].title == "All Clear"
    assert engine.get_alarm(Level.URGENT).last_emit_time is None
    # nothing left to clear on the next cycle
    assert _cycle(engine) == []


def test_snooze_request_acks_the_alarm_silently(engine):
    snooze = {"level": Level.URGENT, "title": "Snoozing high alarm since there is enough IOB", "message": "IOB ok",
              "length_mills": int(mins(10).msecs)}

    events = _cycle(engine, _notify(), snoozes=[snooze])

    assert events == []
    alarm = engine.get_alarm(Level.URGENT)
    assert alarm.last_ack_time == NOW
    assert alarm.silence_time == int(mins(10).msecs)


def test_lower_level_snooze_does_not_silence_urgent(engine):
    snooze = {"level": Level.WARN, "title": "Snooze", "message": "m", "length_mills": 600_000}
    events = _cycle(engine, _notify(), snoozes=[snooze])
    assert len(events) == 1


def test_only_the_highest_alarm_per_group_is_emitted(engine):
    events = _cycle(
        engine,
        _notify(level=Level.WARN, title="Warning HIGH"),
        _notify(level=Level.URGENT, title="Urgent HIGH"),
        _notify(level=Level.WARN, title="Stale data, check rig?", group="Time Ago", event_name="timeago",
                plugin="timeago"),
    )
    assert sorted(e.title for e in events) == ["Stale data, check rig?", "Urgent HIGH"]
    assert engine.get_alarm(Level.WARN, "Time Ago").label == "Time Ago:1"
    assert engine.get_alarm(Level.URGENT).label == "Urgent"


def test_info_and_announcements_are_emitted_every_cycle(engine):
    info = _notify(level=Level.INFO, title="Info", event_name=None)
    announcement = _notify(level=Level.URGENT, title="Announcement", event_name=None, is_announcement=True)

    first = _cycle(engine, info, announcement)
    second = _cycle(engine, info, announcement)

    assert [e.title for e in first] == ["Info", "Announcement"]
    assert [e.title for e in second] == ["Info", "Announcement"]
    assert engine.get_alarm(Level.URGENT).last_emit_time is None


def test_incomplete_requests_are_dropped(engine, caplog):
    engine.request_notify(_notify(title=None))
    engine.request_notify(_notify(plugin=None))
    engine.request_snooze({"level": Level.URGENT, "title": "Snooze", "message": "m"})
    engine.request_notify({"level": "not a level", "title": "t", "message": "m", "plugin": "p"})

    assert engine.notifies == []
    assert engine.snoozes == []
    assert "isn't complete" in caplog.text


def test_disabled_alarm_events_are_filtered(clock):
    engine = AlarmEngine(clock=clock, settings=MonitorSettings(alarm_urgent_high=False))
    engine.request_notify(_notify())
    engine.request_notify(_notify(event_name="low"))
    assert [n.event_name for n in engine.notifies] == ["low"]


def test_listener_receives_events_and_ack_can_send_clear(clock):
    received = []
    engine = AlarmEngine(listener=received.append, clock=clock)

    _cycle(engine, _notify())
    engine.ack(Level.URGENT, "default", 60_000, send_clear=True)

    assert [e.title for e in received] == ["Urgent HIGH", "All Clear"]
    assert received[1].message == "default - Urgent was ack'd"


def test_reset_forgets_alarm_state(engine):
    engine.ack(Level.URGENT)
    engine.reset_for_tests()
    assert engine.ack(Level.URGENT)


def test_manual_clock_drives_default_process_time():
    clock = ManualClock(NOW + 1)
    engine = AlarmEngine(clock=clock)
    events = _cycle(engine, _notify())
    assert events[0].emitted_at == NOW + 1
