"""
APScheduler job that drains the sync queue.

Each tick runs one time-boxed QueueProcessor pass. Ticks may overlap up to
settings.scheduler_max_instances: claims are atomic, so two passes never
execute the same item.

The scheduler runs inside the CLI process (wired in __main__.py).
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from fieldsync.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(processor) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        processor: QueueProcessor whose pass runs on every tick.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _process_queue,
        trigger="interval",
        seconds=settings.queue_process_interval_seconds,
        id="process_sync_queue",
        replace_existing=True,
        coalesce=True,
        max_instances=settings.scheduler_max_instances,
        kwargs={"processor": processor},
    )

    return scheduler


async def _process_queue(processor) -> None:
    """
    Scheduled job: one queue pass.

    Exceptions are logged, never raised, so the scheduler stays alive.
    """
    try:
        result = await processor.process()
        logger.debug("Scheduled sync pass finished: %s", result.as_dict())
    except Exception as exc:
        logger.error("Scheduled sync pass failed: %s", exc, exc_info=True)
