"""
One monitored data source: the record store, the profile resolver, the
plugin pipeline and the alarm engine it drives.

A session is not shared between concurrent evaluations; hosts serving more
than one user create one session each.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from glucosentry.core.settings import MonitorSettings
from glucosentry.models.levels import Level
from glucosentry.models.notifications import DEFAULT_GROUP, AlarmEvent
from glucosentry.models.records import InboundPayload
from glucosentry.services.notifications import AlarmEngine
from glucosentry.services.plugins.base import Plugin
from glucosentry.services.plugins.pipeline import PluginPipeline, Renderer, server_plugins
from glucosentry.services.profile import ProfileResolver
from glucosentry.services.record_store import RecordStore
from glucosentry.services.sandbox import Sandbox
from glucosentry.utils.times import mins, now_ms

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    time: int
    properties: dict[str, Any] = field(default_factory=dict)
    events: list[AlarmEvent] = field(default_factory=list)


class MonitorSession:
    def __init__(
        self,
        settings: MonitorSettings,
        plugins: Optional[list[Plugin]] = None,
        alarm_engine: Optional[AlarmEngine] = None,
        clock: Optional[Callable[[], int]] = None,
        runtime_state: str = "loaded",
    ) -> None:
        self.settings = settings
        self.clock = clock or now_ms
        self.store = RecordStore(retention_ms=settings.retention_ms)
        self.profile = ProfileResolver()
        self.pipeline = PluginPipeline(plugins if plugins is not None else server_plugins(), settings)
        self.alarms = alarm_engine or AlarmEngine(clock=self.clock, settings=settings)
        self.runtime_state = runtime_state
        self._last_events: dict[tuple[Level, str], AlarmEvent] = {}

    def receive(self, payload: InboundPayload | dict[str, Any]) -> None:
        if isinstance(payload, dict):
            payload = InboundPayload.model_validate(payload)
        self.store.receive(payload, now=self.clock())
        if payload.profiles:
            self.profile.load_data(self.store.profiles)
        self.profile.update_treatments(
            self.store.profile_treatments,
            self.store.tempbasal_treatments,
            self.store.combobolus_treatments,
        )

    def sandbox(self, time: Optional[int] = None) -> Sandbox:
        now = self.clock()
        time = now if time is None else time
        return Sandbox(
            time,
            self.store,
            self.settings,
            profile=self.profile,
            notifications=self.alarms.safe_view(),
            runtime_state=self.runtime_state,
            in_retro_mode=time < now,
        )

    def tick(self, time: Optional[int] = None, renderer: Optional[Renderer] = None) -> CycleResult:
        sbx = self.sandbox(time)
        self.alarms.init_requests()

        self.pipeline.set_properties(sbx)
        self.pipeline.check_notifications(sbx)
        if renderer is not None:
            self.pipeline.update_visualisations(sbx, renderer)

        events = self.alarms.process(sbx.time)
        for event in events:
            if not event.clear:
                self._last_events[(event.level, event.group)] = event

        logger.debug(
            "Cycle complete",
            extra={"time": sbx.time, "retro": sbx.in_retro_mode, "properties": sorted(sbx.properties), "events": len(events)},
        )
        return CycleResult(time=sbx.time, properties=dict(sbx.properties), events=events)

    def ack(
        self,
        level: Level,
        group: str = DEFAULT_GROUP,
        silence_mins: Optional[float] = None,
        send_clear: bool = False,
    ) -> bool:
        """
        Acknowledge an alarm. Without ``silence_mins`` the first snooze option
        configured for the alarm's event is used.
        """
        level = Level(level)
        if silence_mins is None:
            last = self._last_events.get((level, group))
            notify = last if last is not None else AlarmEvent(level=level, title="", message="", group=group)
            silence_mins = self.settings.snooze_first_mins_for_alarm_event(notify)
        return self.alarms.ack(level, group, int(mins(silence_mins).msecs), send_clear=send_clear)
