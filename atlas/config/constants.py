"""
Business constants.

Centralized constants for cycle positions, scoring, referral tiers,
PIN protection and internal transfers.
"""

from decimal import Decimal

# ========================================================================
# CYCLE POSITIONS
# ========================================================================

# Index inside the seven selected entries (highest score first)
POSITION_RECEIVER = 0
POSITIONS_ADVANCE = (2, 4)
POSITIONS_REENTRY = (1, 3, 6)
POSITION_BONUS_SOURCE = 5

# ========================================================================
# SCORE ENGINE
# ========================================================================

SCORE_TIME_WEIGHT = Decimal("2")  # Points per hour waiting
SCORE_REENTRY_WEIGHT = Decimal("1.5")  # Points per reentry
SCORE_REENTRY_CAP = Decimal("15")  # Ceiling for reentry points (10 reentries)
SCORE_PRECISION = Decimal("0.0001")

# Progressive referral points: (upper bound of referral count, points each)
REFERRAL_SCORE_TIERS: tuple[tuple[int, Decimal], ...] = (
    (10, Decimal("10")),
    (30, Decimal("5")),
    (50, Decimal("2")),
    (100, Decimal("1")),
)
REFERRAL_SCORE_CAP = Decimal("290")

# ========================================================================
# REFERRAL BONUS
# ========================================================================

# (minimum active direct referrals, share of the entry value paid)
REFERRAL_BONUS_TIERS: tuple[tuple[int, Decimal], ...] = (
    (10, Decimal("0.40")),
    (5, Decimal("0.20")),
    (0, Decimal("0")),
)

# ========================================================================
# JUPITER POOL SURPLUS SWEEP
# ========================================================================

# Split of swept level surplus; must sum to 1
SURPLUS_RESERVE_SHARE = Decimal("0.10")
SURPLUS_OPERATIONAL_SHARE = Decimal("0.10")
SURPLUS_PROFIT_SHARE = Decimal("0.40")
SURPLUS_POOL_SHARE = Decimal("0.40")

# ========================================================================
# QUOTA PURCHASE
# ========================================================================

MAX_QUOTAS_PER_PURCHASE = 10

# ========================================================================
# PIN / TRANSFERS
# ========================================================================

PIN_MIN_LENGTH = 4
PIN_MAX_LENGTH = 6
PIN_BCRYPT_ROUNDS = 10

# Progressive lockout: (failed attempts, lock minutes)
PIN_LOCKOUT_THRESHOLDS: tuple[tuple[int, int], ...] = (
    (3, 15),
    (6, 60),
    (9, 1440),
)

SYSTEM_FUNDS_ID = 1
JUPITER_POOL_ID = 1

# ========================================================================
# JOBS
# ========================================================================

# Dramatiq time limits (milliseconds)
DRAMATIQ_TIME_LIMIT_CYCLES = 360_000
DRAMATIQ_TIME_LIMIT_STANDARD = 180_000

# Redis lock timeouts (seconds), must outlast the time limit of the task
# holding the lock
LOCK_TIMEOUT_MARGIN = 60
LOCK_TIMEOUT_CYCLES = DRAMATIQ_TIME_LIMIT_CYCLES // 1000 + LOCK_TIMEOUT_MARGIN
LOCK_TIMEOUT_SCORES = DRAMATIQ_TIME_LIMIT_STANDARD // 1000 + LOCK_TIMEOUT_MARGIN
LOCK_TIMEOUT_RECONCILE = DRAMATIQ_TIME_LIMIT_STANDARD // 1000 + LOCK_TIMEOUT_MARGIN
