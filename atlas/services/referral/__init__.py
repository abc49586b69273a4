"""
Referral module.

Referrer tree management and referral bonus rates.
"""

from atlas.services.referral.bonus_rate import (
    ReferralBonusRate,
    TieredReferralBonusRate,
    rate_for_referrals,
)
from atlas.services.referral.referral_service import ReferralService

__all__ = [
    "ReferralBonusRate",
    "ReferralService",
    "TieredReferralBonusRate",
    "rate_for_referrals",
]
