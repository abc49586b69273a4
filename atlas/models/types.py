"""
Standard type definitions for database models.

Provides consistent types for monetary and score fields across all models.
"""

from sqlalchemy import DECIMAL

# Standard money type for amounts, balances, rewards
# Precision: 18 digits total, 8 after decimal point
# Range: up to 9,999,999,999.99999999
MoneyType = DECIMAL(18, 8)

# Queue ranking score
# Precision: 18 digits total, 4 after decimal point
ScoreType = DECIMAL(18, 4)

# Bonus and surplus share (e.g. 0.4000 = 40%)
RateType = DECIMAL(6, 4)
