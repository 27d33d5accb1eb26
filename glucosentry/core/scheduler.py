import logging
from typing import Any, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


def init_scheduler() -> AsyncIOScheduler:
    """Start the process-wide scheduler. Must be called from a running event loop."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler()
        _scheduler.start()
        logger.info("Background scheduler initialized")
    return _scheduler


def get_scheduler() -> Optional[AsyncIOScheduler]:
    return _scheduler


def schedule_task(func, trigger: Any, task_id: str, replace: bool = True):
    if _scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    job = _scheduler.add_job(func, trigger, id=task_id, replace_existing=replace, max_instances=1, coalesce=True)
    logger.info("Scheduled task", extra={"task_id": task_id, "trigger": str(trigger)})
    return job


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Background scheduler stopped")


__all__ = ["get_scheduler", "init_scheduler", "schedule_task", "shutdown_scheduler"]
