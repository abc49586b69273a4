"""
Ledger reconciliation task.

Checks both conservation equations. A mismatch halts every level; an
operator must investigate and resume them.
"""

import dramatiq
from loguru import logger

from atlas.config.constants import DRAMATIQ_TIME_LIMIT_STANDARD, LOCK_TIMEOUT_RECONCILE
from jobs.async_runner import run_async, run_exclusive
from jobs.database import task_matrix_engine


@dramatiq.actor(max_retries=1, time_limit=DRAMATIQ_TIME_LIMIT_STANDARD)
def reconcile_ledger() -> None:
    issues = run_async(_reconcile_ledger_async())
    if issues is None:
        return
    if issues:
        logger.critical(f"Ledger mismatch, all levels halted: {'; '.join(issues)}")
    else:
        logger.info("Ledger reconciliation passed")


async def _reconcile_ledger_async() -> list[str] | None:
    async def check() -> list[str]:
        report = await task_matrix_engine().reconcile()
        return report.issues

    return await run_exclusive("reconcile_ledger", LOCK_TIMEOUT_RECONCILE, check)
