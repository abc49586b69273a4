"""
Scheduler process.

Enqueues the periodic matrix tasks on their intervals. The work itself
runs in dramatiq workers:

    dramatiq jobs.tasks
    python -m jobs.scheduler
"""

import asyncio
import signal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from atlas.config.settings import settings
from atlas.utils.logging import setup_logging
from jobs.health import set_scheduler, start_health_server, stop_health_server
from jobs.tasks import process_cycles, reconcile_ledger, update_queue_scores


def create_scheduler() -> AsyncIOScheduler:
    """Build the scheduler with every periodic job registered."""
    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 60,
        },
    )
    scheduler.add_job(
        process_cycles.send,
        trigger=IntervalTrigger(minutes=settings.cycle_interval_minutes),
        id="process_cycles",
        name="Process matrix cycles",
        replace_existing=True,
    )
    scheduler.add_job(
        update_queue_scores.send,
        trigger=IntervalTrigger(minutes=settings.score_update_interval_minutes),
        id="update_queue_scores",
        name="Refresh queue scores",
        replace_existing=True,
    )
    scheduler.add_job(
        reconcile_ledger.send,
        trigger=IntervalTrigger(minutes=settings.reconcile_interval_minutes),
        id="reconcile_ledger",
        name="Reconcile ledger",
        replace_existing=True,
    )
    return scheduler


async def main() -> None:
    setup_logging("scheduler")
    scheduler = create_scheduler()
    scheduler.start()
    set_scheduler(scheduler)
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")

    runner = await start_health_server(
        settings.scheduler_health_host, settings.scheduler_health_port
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        logger.info("Stopping scheduler...")
        scheduler.shutdown(wait=False)
        await stop_health_server(runner)


if __name__ == "__main__":
    asyncio.run(main())
