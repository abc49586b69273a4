"""
PIN service.

Transfer PIN management with progressive lockout: 3 failures lock the
PIN for 15 minutes, 6 for an hour, 9 and more for a day. A correct PIN
resets the counter.
"""

from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from atlas.config.constants import PIN_LOCKOUT_THRESHOLDS, PIN_MAX_LENGTH, PIN_MIN_LENGTH
from atlas.models.user import User
from atlas.repositories.user_repository import UserRepository
from atlas.services.base_service import BaseService, ServiceResult, transaction
from atlas.utils.datetime_utils import ensure_aware, utc_now
from atlas.utils.exceptions import (
    InvalidPin,
    InvalidPinFormat,
    MatrixError,
    PinLocked,
    PinNotSet,
    UserNotFound,
)

def validate_pin_format(pin: str) -> str:
    """
    Check that a PIN is 4 to 6 digits.

    Raises:
        InvalidPinFormat: If the PIN is malformed
    """
    if not isinstance(pin, str) or not pin.isdigit():
        raise InvalidPinFormat("PIN must contain digits only")
    if not PIN_MIN_LENGTH <= len(pin) <= PIN_MAX_LENGTH:
        raise InvalidPinFormat(
            f"PIN must be {PIN_MIN_LENGTH} to {PIN_MAX_LENGTH} digits long"
        )
    return pin


def lockout_minutes(failed_attempts: int) -> int:
    """Lock duration after the given number of consecutive failures."""
    minutes = 0
    for threshold, duration in PIN_LOCKOUT_THRESHOLDS:
        if failed_attempts >= threshold:
            minutes = duration
    return minutes


class PinService(BaseService):
    """Transfer PIN setup and verification."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(session)
        self.clock = clock
        self.user_repo = UserRepository(session)

    async def _get_user(self, user_id: int, for_update: bool = False) -> User:
        user = await self.user_repo.get_by_id(user_id, for_update=for_update)
        if user is None:
            raise UserNotFound(user_id)
        return user

    @transaction
    async def set_pin(self, user_id: int, pin: str) -> User:
        """
        Set the PIN of a user that has none.

        Raises:
            InvalidPinFormat: If the PIN is malformed
            InvalidPin: If a PIN is already set (use change_pin)
        """
        validate_pin_format(pin)
        user = await self._get_user(user_id, for_update=True)
        if user.has_pin:
            raise InvalidPin("PIN is already set, use change_pin")
        user.set_pin(pin)
        self.logger.info("PIN set", extra={"user_id": user_id})
        return user

    async def change_pin(self, user_id: int, current_pin: str, new_pin: str) -> User:
        """
        Replace the PIN after verifying the current one.

        Raises:
            InvalidPinFormat, PinNotSet, PinLocked, InvalidPin
        """
        validate_pin_format(new_pin)
        await self.verify_pin(user_id, current_pin)
        user = await self._get_user(user_id, for_update=True)
        user.set_pin(new_pin)
        await self.commit()
        self.logger.info("PIN changed", extra={"user_id": user_id})
        return user

    async def verify_pin(self, user_id: int, pin: str) -> None:
        """
        Verify a PIN and persist the attempt counter.

        Every outcome ends the transaction: the counter update is committed
        whether or not the PIN matches, so a failed attempt survives the
        rollback of the operation it was guarding, and the user row lock
        is released before the caller takes its own locks.

        Raises:
            UserNotFound: If the user does not exist
            PinNotSet: If the user has no PIN
            PinLocked: If the PIN is locked after repeated failures
            InvalidPin: If the PIN does not match
        """
        user = await self._get_user(user_id, for_update=True)
        if not user.has_pin:
            await self.rollback()
            raise PinNotSet("Set a transfer PIN first")

        now = self.clock()
        if user.pin_locked_until and ensure_aware(user.pin_locked_until) > now:
            remaining = ensure_aware(user.pin_locked_until) - now
            minutes = int(remaining.total_seconds() // 60) + 1
            await self.rollback()
            raise PinLocked(f"PIN locked, try again in {minutes} min")

        if user.verify_pin(pin):
            user.pin_attempts = 0
            user.pin_locked_until = None
            await self.commit()
            return

        user.pin_attempts = (user.pin_attempts or 0) + 1
        minutes = lockout_minutes(user.pin_attempts)
        locked = minutes > 0
        if locked:
            user.pin_locked_until = now + timedelta(minutes=minutes)
        await self.commit()

        self.logger.warning(
            "Invalid PIN",
            extra={"user_id": user_id, "attempts": user.pin_attempts, "locked": locked},
        )
        if locked:
            raise PinLocked(f"Too many failed attempts, PIN locked for {minutes} min")
        next_threshold = next(
            (t for t, _ in PIN_LOCKOUT_THRESHOLDS if t > user.pin_attempts), None
        )
        left = f", {next_threshold - user.pin_attempts} attempts left" if next_threshold else ""
        raise InvalidPin(f"Invalid PIN{left}")

    async def check_pin(self, user_id: int, pin: str) -> ServiceResult:
        """verify_pin with a ServiceResult instead of an exception."""
        try:
            await self.verify_pin(user_id, pin)
        except MatrixError as e:
            return ServiceResult.from_error(e)
        return ServiceResult.ok()
