"""
Referral bonus rate.

The share of a cycle's bonus paid to the referrer of the BONUS SOURCE
position is decided by a pluggable predicate. The default rule grades the
referrer by active direct referrals.
"""

from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from atlas.config.constants import REFERRAL_BONUS_TIERS
from atlas.models.enums import UserStatus
from atlas.repositories.user_repository import UserRepository


class ReferralBonusRate(Protocol):
    """Returns the share of the entry value paid as referral bonus."""

    async def __call__(
        self, session: AsyncSession, referrer_id: int, level: int
    ) -> Decimal: ...


def rate_for_referrals(
    active_referrals: int,
    tiers: tuple[tuple[int, Decimal], ...] = REFERRAL_BONUS_TIERS,
) -> Decimal:
    """
    Map an active referral count to a bonus rate.

    Args:
        active_referrals: Active direct referrals of the referrer
        tiers: (minimum referrals, rate) pairs, highest minimum first

    Returns:
        Rate as a fraction (0, 0.20 or 0.40 with default tiers)
    """
    for minimum, rate in tiers:
        if active_referrals >= minimum:
            return rate
    return Decimal("0")


class TieredReferralBonusRate:
    """
    Default bonus rate: 0-4 active referrals pay 0%, 5-9 pay 20%,
    10 or more pay 40% of the level entry value.

    Referrers that are not ACTIVE earn nothing.
    """

    def __init__(
        self, tiers: tuple[tuple[int, Decimal], ...] = REFERRAL_BONUS_TIERS
    ) -> None:
        self.tiers = tuple(sorted(tiers, key=lambda tier: tier[0], reverse=True))

    async def __call__(
        self, session: AsyncSession, referrer_id: int, level: int
    ) -> Decimal:
        repo = UserRepository(session)
        referrer = await repo.get_by_id(referrer_id)
        if referrer is None or referrer.status != UserStatus.ACTIVE:
            return Decimal("0")
        active = await repo.count_active_referrals(referrer_id)
        return rate_for_referrals(active, self.tiers)
