"""
Funds module.

System funds ledger and Jupiter Pool.
"""

from atlas.services.funds.ledger import (
    FundsDelta,
    LedgerReport,
    LedgerSnapshot,
    SurplusSweep,
    SystemFundsLedger,
)

__all__ = [
    "FundsDelta",
    "LedgerReport",
    "LedgerSnapshot",
    "SurplusSweep",
    "SystemFundsLedger",
]
