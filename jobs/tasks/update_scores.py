"""Queue score refresh task."""

import dramatiq
from loguru import logger

from atlas.config.constants import DRAMATIQ_TIME_LIMIT_STANDARD, LOCK_TIMEOUT_SCORES
from jobs.async_runner import run_async, run_exclusive
from jobs.database import task_matrix_engine


@dramatiq.actor(max_retries=2, time_limit=DRAMATIQ_TIME_LIMIT_STANDARD)
def update_queue_scores() -> None:
    """
    Recompute the score of every waiting entry.

    Entries locked by an in-flight cycle are skipped until the next run.
    """
    updated = run_async(_update_queue_scores_async())
    if updated is not None:
        logger.info(f"Queue scores refreshed for {updated} entries")


async def _update_queue_scores_async() -> int | None:
    return await run_exclusive(
        "update_queue_scores",
        LOCK_TIMEOUT_SCORES,
        lambda: task_matrix_engine().update_all_queue_scores(),
    )
