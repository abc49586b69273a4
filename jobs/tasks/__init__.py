"""Dramatiq actors."""

import jobs.broker  # noqa: F401  registers the broker before actors are declared

from jobs.tasks.process_cycles import process_cycles
from jobs.tasks.reconcile_ledger import reconcile_ledger
from jobs.tasks.update_scores import update_queue_scores

__all__ = [
    "process_cycles",
    "reconcile_ledger",
    "update_queue_scores",
]
