import logging
from typing import Any, Callable, Optional

from pydantic import ValidationError

from glucosentry.core.constants import THIRTY_MINUTES
from glucosentry.models.levels import Level, to_display
from glucosentry.models.notifications import DEFAULT_GROUP, Alarm, AlarmEvent, Notify, Snooze
from glucosentry.utils.times import now_ms

logger = logging.getLogger(__name__)

AUTO_ACK_SILENCE_MS = 1


class SafeNotifications:
    """The only part of the alarm engine plugins get to see."""

    def __init__(self, engine: "AlarmEngine") -> None:
        self._engine = engine

    def request_notify(self, **fields: Any) -> None:
        self._engine.request_notify(fields)

    def request_snooze(self, **fields: Any) -> None:
        self._engine.request_snooze(fields)


class AlarmEngine:
    """
    Reduces the notify/snooze requests raised during one cycle into alarm
    events. Alarm state per (level, group) survives across cycles.
    """

    def __init__(
        self,
        listener: Optional[Callable[[AlarmEvent], None]] = None,
        clock: Optional[Callable[[], int]] = None,
        settings: Any = None,
    ) -> None:
        self._listener = listener
        self._clock = clock or now_ms
        self._settings = settings
        self._alarms: dict[tuple[Level, str], Alarm] = {}
        self.notifies: list[Notify] = []
        self.snoozes: list[Snooze] = []
        self._emitted: list[AlarmEvent] = []

    def safe_view(self) -> SafeNotifications:
        return SafeNotifications(self)

    def init_requests(self) -> None:
        self.notifies = []
        self.snoozes = []

    def reset_for_tests(self) -> None:
        logger.info("Resetting alarm state")
        self._alarms = {}
        self.init_requests()

    def get_alarm(self, level: Level, group: str = DEFAULT_GROUP) -> Alarm:
        level = Level(level)
        key = (level, group)
        alarm = self._alarms.get(key)
        if alarm is None:
            label = to_display(level) if group == DEFAULT_GROUP else f"{group}:{int(level)}"
            alarm = Alarm(level=level, group=group, label=label)
            self._alarms[key] = alarm
        return alarm

    def request_notify(self, notify: Notify | dict[str, Any]) -> None:
        if isinstance(notify, dict):
            try:
                notify = Notify.model_validate(notify)
            except ValidationError as exc:
                logger.error("Unable to request notification, invalid fields", extra={"error": str(exc)})
                return
        if notify.level is None or not notify.title or not notify.message or not notify.plugin:
            logger.error(
                "Unable to request notification, since the notify isn't complete",
                extra={"notify": notify.model_dump(exclude={"debug"})},
            )
            return
        if self._settings is not None and not self._settings.is_alarm_event_enabled(notify):
            logger.debug("Alarm event disabled in settings", extra={"event_name": notify.event_name})
            return
        if not notify.group:
            notify.group = DEFAULT_GROUP
        self.notifies.append(notify)

    def request_snooze(self, snooze: Snooze | dict[str, Any]) -> None:
        if isinstance(snooze, dict):
            try:
                snooze = Snooze.model_validate(snooze)
            except ValidationError as exc:
                logger.error("Unable to request snooze, invalid fields", extra={"error": str(exc)})
                return
        if not snooze.level or not snooze.title or not snooze.message or not snooze.length_mills:
            logger.error(
                "Unable to request snooze, since the snooze isn't complete",
                extra={"snooze": snooze.model_dump(exclude={"debug"})},
            )
            return
        if not snooze.group:
            snooze.group = DEFAULT_GROUP
        self.snoozes.append(snooze)

    def find_highest_alarm(self, group: str = DEFAULT_GROUP) -> Optional[Notify]:
        in_group = [n for n in self.notifies if n.group == group and not n.is_announcement]
        for level in (Level.URGENT, Level.WARN):
            for notify in in_group:
                if notify.level == level:
                    return notify
        return None

    def find_unsnoozeable(self) -> list[Notify]:
        return [n for n in self.notifies if n.level <= Level.INFO or n.is_announcement]

    def snoozed_by(self, notify: Notify) -> Optional[Snooze]:
        if notify.is_announcement:
            return None
        candidates = [s for s in self.snoozes if s.group == notify.group and s.level >= notify.level]
        if not candidates:
            return None
        return max(candidates, key=lambda s: s.length_mills)

    def process(self, now: Optional[int] = None) -> list[AlarmEvent]:
        now = self._clock() if now is None else now
        self._emitted = []

        groups: list[str] = []
        for group in [n.group for n in self.notifies] + [a.group for a in self._alarms.values()]:
            if group and group not in groups:
                groups.append(group)
        if not groups:
            groups = [DEFAULT_GROUP]

        for group in groups:
            highest = self.find_highest_alarm(group)
            if highest is None:
                self._auto_ack_alarms(group)
                continue

            snooze = self.snoozed_by(highest)
            if snooze is not None:
                logger.info(
                    "Snoozing alarm",
                    extra={"group": group, "level": int(highest.level), "snooze": snooze.title, "length_mills": snooze.length_mills},
                )
                self.ack(snooze.level, group, snooze.length_mills)
                continue

            self._emit_alarm(highest, now)

        for notify in self.find_unsnoozeable():
            self._emit(self._event_from(notify), now)

        return list(self._emitted)

    def ack(self, level: Level, group: str = DEFAULT_GROUP, time: Optional[int] = None, send_clear: bool = False) -> bool:
        alarm = self.get_alarm(level, group)
        now = self._clock()
        if now < alarm.last_ack_time + alarm.silence_time:
            logger.warning(
                "Alarm has already been snoozed, don't snooze it again",
                extra={"level": int(alarm.level), "group": group},
            )
            return False

        alarm.last_ack_time = now
        alarm.silence_time = time if time else THIRTY_MINUTES
        alarm.last_emit_time = None

        if alarm.level == Level.URGENT:
            self.ack(Level.WARN, group, time)

        if send_clear:
            self._emit(
                AlarmEvent(
                    level=Level.NONE,
                    title="All Clear",
                    message=f"{group} - {to_display(alarm.level)} was ack'd",
                    group=group,
                    clear=True,
                ),
                now,
            )
        return True

    def _auto_ack_alarms(self, group: str) -> None:
        cleared = False
        for level in (Level.WARN, Level.URGENT):
            alarm = self.get_alarm(level, group)
            if alarm.last_emit_time:
                logger.info("Auto acking alarm", extra={"level": int(level), "group": group})
                self.ack(level, group, AUTO_ACK_SILENCE_MS)
                cleared = True
        if cleared:
            self._emit(
                AlarmEvent(
                    level=Level.NONE,
                    title="All Clear",
                    message="Auto ack'd alarm(s)",
                    group=group,
                    clear=True,
                ),
                self._clock(),
            )

    def _emit_alarm(self, notify: Notify, now: int) -> None:
        alarm = self.get_alarm(notify.level, notify.group)
        if now > alarm.last_ack_time + alarm.silence_time:
            self._emit(self._event_from(notify), now)
            alarm.last_emit_time = now
        else:
            silenced_mins = (alarm.silence_time - (now - alarm.last_ack_time)) // 60000
            logger.info("Alarm is silenced", extra={"alarm": alarm.label, "minutes_left": silenced_mins})

    @staticmethod
    def _event_from(notify: Notify) -> AlarmEvent:
        return AlarmEvent(
            level=notify.level,
            title=notify.title,
            message=notify.message,
            group=notify.group,
            plugin=notify.plugin,
            event_name=notify.event_name,
            pushover_sound=notify.pushover_sound,
            is_announcement=notify.is_announcement,
            debug=notify.debug,
        )

    def _emit(self, event: AlarmEvent, now: int) -> None:
        event.emitted_at = now
        self._emitted.append(event)
        logger.info(
            "Emitting notification",
            extra={"level": int(event.level), "group": event.group, "title": event.title, "clear": event.clear},
        )
        if self._listener is not None:
            self._listener(event)
