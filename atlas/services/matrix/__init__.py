"""
Matrix module.

Queue admission, scoring, quota purchase and cycle processing.
"""

from atlas.services.matrix.cycle_processor import CycleProcessor, CycleResult, PositionResult
from atlas.services.matrix.engine import CycleRunReport, MatrixEngine
from atlas.services.matrix.queue_service import (
    LevelStats,
    QueuePage,
    QueuePosition,
    QueueService,
    estimate_wait,
)
from atlas.services.matrix.quota_service import QuotaCheck, QuotaService
from atlas.services.matrix.score_engine import ScoreEngine, calculate_score

__all__ = [
    "CycleProcessor",
    "CycleResult",
    "CycleRunReport",
    "LevelStats",
    "MatrixEngine",
    "PositionResult",
    "QueuePage",
    "QueuePosition",
    "QueueService",
    "QuotaCheck",
    "QuotaService",
    "ScoreEngine",
    "calculate_score",
    "estimate_wait",
]
