import asyncio
import logging

from glucosentry.core.logging import configure_logging
from glucosentry.core.scheduler import shutdown_scheduler
from glucosentry.core.settings import get_settings
from glucosentry.jobs import PollJob, setup_periodic_tasks
from glucosentry.services.monitor import MonitorSession
from glucosentry.services.nightscout_client import NightscoutClient

logger = logging.getLogger(__name__)


async def run() -> None:
    settings = get_settings()
    client = NightscoutClient.from_config(settings.nightscout)
    job = PollJob(MonitorSession(settings.monitor), client)

    await job.run_once()
    setup_periodic_tasks(job)
    logger.info("Monitoring started", extra={"base_url": client.base_url})
    try:
        await asyncio.Event().wait()
    finally:
        shutdown_scheduler()
        await client.aclose()


def main() -> None:
    configure_logging()
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Monitoring stopped")


if __name__ == "__main__":
    main()
