"""
Background polling: pull new records from Nightscout every few minutes and
run one monitor cycle on them.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from apscheduler.triggers.interval import IntervalTrigger

from glucosentry.core.scheduler import init_scheduler, schedule_task
from glucosentry.services.monitor import CycleResult, MonitorSession
from glucosentry.services.nightscout_client import NightscoutClient, NightscoutError
from glucosentry.utils.times import mins

logger = logging.getLogger(__name__)

POLL_TASK_ID = "nightscout_poll"
DEFAULT_POLL_MINUTES = 5
# re-read a window before the last fetch so late uploads are not missed
POLL_OVERLAP_MS = int(mins(10).msecs)


@dataclass
class JobStatus:
    last_run_at: Optional[int] = None
    last_ok: Optional[bool] = None
    last_error: Optional[str] = None
    runs: int = 0


class PollJob:
    def __init__(self, session: MonitorSession, client: NightscoutClient) -> None:
        self.session = session
        self.client = client
        self.status = JobStatus()
        self._since: Optional[int] = None

    async def run_once(self) -> Optional[CycleResult]:
        """
        Fetch what changed since the previous successful poll and evaluate it.
        Nightscout failures are recorded on ``status`` and skip the cycle.
        """
        self.status.last_run_at = self.session.clock()
        self.status.runs += 1
        try:
            payload = await self.client.fetch_payload(since=self._since)
        except NightscoutError as exc:
            self.status.last_ok = False
            self.status.last_error = str(exc)
            logger.warning("Nightscout poll failed", extra={"error": str(exc)})
            return None

        self.session.receive(payload)
        self._since = payload.last_updated - POLL_OVERLAP_MS if payload.last_updated else None
        result = self.session.tick()
        self.status.last_ok = True
        self.status.last_error = None

        for event in result.events:
            log = logger.warning if event.level.is_alarm else logger.info
            log(
                "Alarm event: %s",
                event.title,
                extra={"level": event.level.display, "group": event.group, "plugin": event.plugin, "clear": event.clear},
            )
        return result


def setup_periodic_tasks(job: PollJob, interval_minutes: float = DEFAULT_POLL_MINUTES):
    init_scheduler()
    trigger = IntervalTrigger(minutes=interval_minutes)
    return schedule_task(job.run_once, trigger, POLL_TASK_ID)


__all__ = ["JobStatus", "PollJob", "setup_periodic_tasks"]
