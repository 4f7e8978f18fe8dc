"""
Main entrypoint: runs the queue scheduler, or one-off operator commands.

FastAPI runs separately under uvicorn (trigger, status and operator endpoints).

Usage:
    python -m fieldsync             # starts the scheduler (one pass per interval)
    python -m fieldsync process     # runs a single pass and prints the counts
    python -m fieldsync health      # prints the sync health report
    uvicorn fieldsync.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import argparse
import asyncio
import json
import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _services():
    from fieldsync.db.engine import get_engine
    from fieldsync.sync.services import build_services

    return build_services(get_engine())


async def _run_once() -> None:
    result = await _services().processor.process()
    print(json.dumps(result.as_dict(), indent=2))


async def _print_health() -> None:
    health = await _services().orchestrator.get_sync_health()
    print(json.dumps(health.as_dict(), indent=2, default=str))


async def _run_scheduler() -> None:
    from fieldsync.config import get_settings
    from fieldsync.scheduler.jobs import build_scheduler

    settings = get_settings()
    services = _services()

    scheduler = build_scheduler(services.processor)
    scheduler.start()
    logger.info(
        "Scheduler started (queue pass every %ds, %d pending)",
        settings.queue_process_interval_seconds,
        services.processor.get_pending_count(),
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        logger.info("Goodbye.")


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(prog="fieldsync", description="Outbound sync queue")
    parser.add_argument(
        "command", nargs="?", default="run", choices=("run", "process", "health"),
    )
    args = parser.parse_args(argv)

    if args.command == "process":
        asyncio.run(_run_once())
    elif args.command == "health":
        asyncio.run(_print_health())
    else:
        try:
            asyncio.run(_run_scheduler())
        except KeyboardInterrupt:
            pass


if __name__ == "__main__":
    main()
