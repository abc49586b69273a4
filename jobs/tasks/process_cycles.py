"""
Cycle processing task.

Drains every level that holds a full cycle. Runs every minute; the
distributed lock keeps a single worker at it.
"""

import dramatiq
from loguru import logger

from atlas.config.constants import DRAMATIQ_TIME_LIMIT_CYCLES, LOCK_TIMEOUT_CYCLES
from jobs.async_runner import run_async, run_exclusive
from jobs.database import task_matrix_engine


@dramatiq.actor(max_retries=0, time_limit=DRAMATIQ_TIME_LIMIT_CYCLES)
def process_cycles(max_cycles: int | None = None) -> None:
    """
    Process pending cycles across all levels.

    Per-level failures are logged by the engine and do not stop other
    levels; they are retried on the next tick.

    Args:
        max_cycles: Cap on cycles in this run (settings default when None)
    """
    logger.info("Starting cycle processing...")
    summary = run_async(_process_cycles_async(max_cycles))
    if summary is None:
        return
    logger.info(
        f"Cycle processing complete: {summary['processed']} cycles, "
        f"{len(summary['errors'])} level errors"
    )


async def _process_cycles_async(max_cycles: int | None) -> dict | None:
    async def drain() -> dict:
        report = await task_matrix_engine().run_scheduled_cycles(max_cycles)
        return {
            "processed": report.processed,
            "by_level": report.cycles_by_level(),
            "errors": {level: e.code for level, e in report.errors.items()},
            "capped": report.capped,
        }

    return await run_exclusive("process_cycles", LOCK_TIMEOUT_CYCLES, drain)
