"""
Transfer module.

PIN management and internal balance transfers.
"""

from atlas.services.transfer.pin_service import PinService, validate_pin_format
from atlas.services.transfer.transfer_service import TransferLimits, TransferService

__all__ = [
    "PinService",
    "TransferLimits",
    "TransferService",
    "validate_pin_format",
]
