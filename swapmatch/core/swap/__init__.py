"""Swap offers"""
from swapmatch.core.swap.offer import (
    AcceptanceStrategy,
    PaymentPreferences,
    SwapOffer,
    SwapStatus,
    TERMINAL_SWAP_STATUSES,
)

__all__ = [
    "AcceptanceStrategy",
    "PaymentPreferences",
    "SwapOffer",
    "SwapStatus",
    "TERMINAL_SWAP_STATUSES",
]
