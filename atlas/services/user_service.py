"""
User service.

Account creation and status changes. Authentication and credential
storage live outside this package; users arrive here already verified.
"""

import secrets

from sqlalchemy.ext.asyncio import AsyncSession

from atlas.models.enums import UserStatus
from atlas.models.user import User
from atlas.repositories.user_repository import UserRepository
from atlas.services.base_service import BaseService, transaction
from atlas.services.referral.referral_service import ReferralService
from atlas.utils.exceptions import MatrixValidationError, UserNotFound


class UserService(BaseService):
    """User lifecycle."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize user service.

        Args:
            session: Database session
        """
        super().__init__(session)
        self.user_repo = UserRepository(session)
        self.referral_service = ReferralService(session)

    async def _new_referral_code(self) -> str:
        while True:
            code = secrets.token_urlsafe(8)[:12]
            if not await self.user_repo.get_by_referral_code(code):
                return code

    @transaction
    async def create_user(
        self,
        email: str,
        name: str | None = None,
        referrer_id: int | None = None,
        wallet_address: str | None = None,
        status: UserStatus = UserStatus.PENDING,
    ) -> User:
        """
        Register a user.

        Args:
            email: Unique email
            name: Display name
            referrer_id: Referrer user ID
            wallet_address: Payout wallet
            status: Initial status

        Returns:
            Created user

        Raises:
            MatrixValidationError: If the email is taken
            UserNotFound: If the referrer does not exist
        """
        email = email.strip().lower()
        if await self.user_repo.get_by_email(email):
            raise MatrixValidationError(f"Email {email} is already registered")
        if referrer_id is not None:
            await self.referral_service.validate_referrer(None, referrer_id)

        user = await self.user_repo.create(
            email=email,
            name=name,
            wallet_address=wallet_address,
            referrer_id=referrer_id,
            referral_code=await self._new_referral_code(),
            status=status,
        )
        self.logger.info(
            "User created",
            extra={"user_id": user.id, "referrer_id": referrer_id, "status": str(status)},
        )
        return user

    async def _set_status(self, user_id: int, status: UserStatus) -> User:
        user = await self.user_repo.get_by_id(user_id, for_update=True)
        if user is None:
            raise UserNotFound(user_id)
        user.status = status
        await self.session.flush()
        self.logger.info(
            "User status changed", extra={"user_id": user_id, "status": str(status)}
        )
        return user

    @transaction
    async def activate(self, user_id: int) -> User:
        """Mark a user ACTIVE; only active users buy quotas and count as referrals."""
        return await self._set_status(user_id, UserStatus.ACTIVE)

    @transaction
    async def suspend(self, user_id: int) -> User:
        return await self._set_status(user_id, UserStatus.SUSPENDED)

    @transaction
    async def set_kyc_verified(self, user_id: int, verified: bool = True) -> User:
        user = await self.user_repo.get_by_id(user_id, for_update=True)
        if user is None:
            raise UserNotFound(user_id)
        user.is_kyc_verified = verified
        return user
