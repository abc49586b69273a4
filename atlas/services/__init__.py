"""
Services.

Business logic layer.
"""

from atlas.services.base_service import BaseService, ServiceResult
from atlas.services.funds import SystemFundsLedger
from atlas.services.matrix import (
    CycleProcessor,
    MatrixEngine,
    QueueService,
    QuotaService,
    ScoreEngine,
)
from atlas.services.referral import ReferralService
from atlas.services.transfer import PinService, TransferService
from atlas.services.user_service import UserService

__all__ = [
    "BaseService",
    "CycleProcessor",
    "MatrixEngine",
    "PinService",
    "QueueService",
    "QuotaService",
    "ReferralService",
    "ScoreEngine",
    "ServiceResult",
    "SystemFundsLedger",
    "TransferService",
    "UserService",
]
