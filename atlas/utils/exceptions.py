"""
Exception handling utilities.

Defines the matrix error taxonomy. Every error carries a stable ``code``
for API consumers and a human-readable ``reason``.
"""

from decimal import Decimal

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm.exc import StaleDataError


class MatrixError(Exception):
    """Base class for all matrix engine errors."""

    code = "MATRIX_ERROR"
    category = "internal"
    default_reason = "Matrix operation failed"

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason or self.default_reason
        super().__init__(self.reason)

    def to_dict(self) -> dict[str, str]:
        """Serializable error payload."""
        return {"code": self.code, "reason": self.reason}


# ========================================================================
# Validation errors: rejected before any mutation
# ========================================================================


class MatrixValidationError(MatrixError):
    """Input rejected before any mutation."""

    category = "validation"


class InvalidLevel(MatrixValidationError):
    """Level number outside the level table."""

    code = "INVALID_LEVEL"

    def __init__(self, level: object) -> None:
        self.level = level
        super().__init__(f"Invalid level {level!r}: must be an integer from 1 to 10")


class InvalidAmount(MatrixValidationError):
    """Amount is not a positive number or is below a minimum."""

    code = "INVALID_AMOUNT"
    default_reason = "Amount must be positive"


class InvalidQuantity(MatrixValidationError):
    """Quota batch size outside 1..10."""

    code = "INVALID_QUANTITY"

    def __init__(self, quantity: object) -> None:
        self.quantity = quantity
        super().__init__(f"Invalid quantity {quantity!r}: must be an integer from 1 to 10")


class SelfTransfer(MatrixValidationError):
    """Sender and recipient are the same user."""

    code = "SELF_TRANSFER"
    default_reason = "Cannot transfer to yourself"


class InvalidPinFormat(MatrixValidationError):
    """PIN is not 4-6 digits."""

    code = "INVALID_PIN_FORMAT"
    default_reason = "PIN must contain 4 to 6 digits"


class ReferralCycleError(MatrixValidationError):
    """Referrer assignment would create a loop in the referral tree."""

    code = "REFERRAL_CYCLE"
    default_reason = "Referrer assignment would create a referral cycle"


# ========================================================================
# Business-rule errors: rejected after validation, before commit
# ========================================================================


class BusinessRuleError(MatrixError):
    """Operation violates a business rule."""

    category = "business"


class UserNotFound(BusinessRuleError):
    code = "USER_NOT_FOUND"

    def __init__(self, user_id: int) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class UserNotActive(BusinessRuleError):
    code = "USER_NOT_ACTIVE"
    default_reason = "User is not active"


class InsufficientBalance(BusinessRuleError):
    """Balance lower than the amount required."""

    code = "INSUFFICIENT_BALANCE"

    def __init__(self, available: Decimal, required: Decimal) -> None:
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient balance: available {available}, required {required}"
        )


class QuotaLimitExceeded(BusinessRuleError):
    """User already holds the maximum number of quotas at a level."""

    code = "QUOTA_LIMIT_EXCEEDED"

    def __init__(self, level: int, limit: int) -> None:
        self.level = level
        self.limit = limit
        super().__init__(f"Quota limit of {limit} reached for level {level}")


class InvalidPin(BusinessRuleError):
    code = "INVALID_PIN"
    default_reason = "Incorrect PIN"


class PinLocked(BusinessRuleError):
    code = "PIN_LOCKED"
    default_reason = "PIN is temporarily locked"


class PinNotSet(BusinessRuleError):
    code = "PIN_NOT_SET"
    default_reason = "PIN is not configured"


class TransferLimitExceeded(BusinessRuleError):
    code = "TRANSFER_LIMIT_EXCEEDED"
    default_reason = "Daily transfer limit exceeded"


class InsufficientLiquidity(BusinessRuleError):
    """Level cash and Jupiter Pool together cannot cover a payout."""

    code = "INSUFFICIENT_LIQUIDITY"
    default_reason = "Jupiter Pool cannot cover the level shortfall"


# ========================================================================
# Concurrency errors: retried inside the engine, then surfaced
# ========================================================================


class ConcurrencyError(MatrixError):
    """Transient failure caused by concurrent access."""

    category = "concurrency"


class ConcurrencyConflict(ConcurrencyError):
    code = "CONCURRENCY_CONFLICT"
    default_reason = "Concurrent update detected, retry later"


class CycleAborted(ConcurrencyError):
    """Cycle rolled back; queue and balances are unchanged."""

    code = "CYCLE_ABORTED"
    default_reason = "Cycle aborted, no changes were applied"


# ========================================================================
# Integrity errors: fatal for the affected level
# ========================================================================


class IntegrityViolation(MatrixError):
    """Ledger state is inconsistent; requires operator intervention."""

    category = "integrity"


class LedgerIntegrityError(IntegrityViolation):
    code = "LEDGER_INTEGRITY"
    default_reason = "Ledger reconciliation mismatch"


class LevelHalted(IntegrityViolation):
    code = "LEVEL_HALTED"

    def __init__(self, level: int, reason: str | None = None) -> None:
        self.level = level
        super().__init__(
            f"Level {level} is halted" + (f": {reason}" if reason else "")
        )


# Postgres SQLSTATE codes for serialization failure and deadlock
_RETRYABLE_SQLSTATES = {"40001", "40P01"}


def is_retryable(exc: BaseException) -> bool:
    """
    Check if exception is a transient concurrency failure.

    Args:
        exc: Exception to check

    Returns:
        True if the operation may succeed when retried
    """
    if isinstance(exc, (StaleDataError, OperationalError, ConcurrencyConflict)):
        return True
    if isinstance(exc, DBAPIError):
        sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(
            exc.orig, "pgcode", None
        )
        return sqlstate in _RETRYABLE_SQLSTATES
    return False
