"""
SwapMatch Auction Module.

Records for the auction attached to a swap offer:
- Auction and its settings
- Booking and cash proposals
- Automatic winner selection

The ledger, lifecycle manager and sweeper build on storage and are imported
from their own modules.
"""

from swapmatch.core.auction.auction import (
    Auction,
    AuctionSettings,
    AuctionStatus,
    EndReason,
)

from swapmatch.core.auction.proposal import (
    BookingOffer,
    CashOffer,
    Proposal,
    ProposalStatus,
    ProposalType,
)

from swapmatch.core.auction.selection import WinnerSelectionPolicy, cash_key

__all__ = [
    # Auction
    "Auction",
    "AuctionSettings",
    "AuctionStatus",
    "EndReason",
    # Proposals
    "BookingOffer",
    "CashOffer",
    "Proposal",
    "ProposalStatus",
    "ProposalType",
    # Selection
    "WinnerSelectionPolicy",
    "cash_key",
]
