"""
Referral service.

Manages the referrer back-reference. The referral tree is validated on
every assignment so that no loop can be stored.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from atlas.models.user import User
from atlas.repositories.user_repository import UserRepository
from atlas.services.base_service import BaseService
from atlas.utils.db_decorators import rollback_on_error
from atlas.utils.exceptions import ReferralCycleError, UserNotFound

# Upper bound for chain walks; deeper chains are treated as corrupt
MAX_REFERRAL_DEPTH = 10_000


class ReferralService(BaseService):
    """Referrer assignment and lookups."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize referral service.

        Args:
            session: Database session
        """
        super().__init__(session)
        self.user_repo = UserRepository(session)

    async def get_referrer_chain(self, user_id: int) -> list[int]:
        """
        Referrer IDs above a user, nearest first.

        Args:
            user_id: Starting user

        Returns:
            List of ancestor IDs

        Raises:
            ReferralCycleError: If the stored tree already contains a loop
        """
        chain: list[int] = []
        seen = {user_id}
        current = await self.user_repo.get_referrer_id(user_id)
        while current is not None:
            if current in seen or len(chain) >= MAX_REFERRAL_DEPTH:
                raise ReferralCycleError(
                    f"Referral chain of user {user_id} loops at user {current}"
                )
            chain.append(current)
            seen.add(current)
            current = await self.user_repo.get_referrer_id(current)
        return chain

    async def validate_referrer(self, user_id: int | None, referrer_id: int) -> None:
        """
        Check that ``referrer_id`` may become the referrer of ``user_id``.

        Args:
            user_id: User being assigned (None for a user not yet created)
            referrer_id: Proposed referrer

        Raises:
            UserNotFound: If referrer does not exist
            ReferralCycleError: If assignment would close a loop
        """
        if user_id is not None and user_id == referrer_id:
            raise ReferralCycleError("A user cannot refer themselves")
        if not await self.user_repo.exists(id=referrer_id):
            raise UserNotFound(referrer_id)
        if user_id is None:
            return
        ancestors = await self.get_referrer_chain(referrer_id)
        if user_id in ancestors:
            raise ReferralCycleError(
                f"User {user_id} is already an ancestor of referrer {referrer_id}"
            )

    @rollback_on_error
    async def assign_referrer(self, user_id: int, referrer_id: int) -> User:
        """
        Set a user's referrer after validating the tree.

        Args:
            user_id: User ID
            referrer_id: Referrer ID

        Returns:
            Updated user
        """
        user = await self.user_repo.get_by_id(user_id, for_update=True)
        if user is None:
            raise UserNotFound(user_id)
        await self.validate_referrer(user_id, referrer_id)
        user.referrer_id = referrer_id
        await self.session.flush()
        self.logger.info(
            "Referrer assigned",
            extra={"user_id": user_id, "referrer_id": referrer_id},
        )
        return user

    async def count_active_referrals(self, user_id: int) -> int:
        """Active direct referrals of a user."""
        return await self.user_repo.count_active_referrals(user_id)
