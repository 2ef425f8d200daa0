"""
Swap offers - a listed reservation seeking exchange.

A swap offer is owned by its creator, accepts proposals according to its
acceptance strategy, and becomes terminal once accepted, cancelled or
completed.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional


class SwapStatus(str, Enum):
    """Lifecycle status of a swap offer."""
    AVAILABLE = "available"
    PENDING = "pending"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    EXPIRED = "expired"


TERMINAL_SWAP_STATUSES = frozenset(
    {SwapStatus.ACCEPTED, SwapStatus.CANCELLED, SwapStatus.COMPLETED}
)

# Listed and able to take proposals
OPEN_SWAP_STATUSES = frozenset({SwapStatus.AVAILABLE, SwapStatus.PENDING})


class AcceptanceStrategy(str, Enum):
    """How a swap resolves incoming proposals."""
    FIRST_MATCH = "first_match"  # Accept the first valid proposal directly
    AUCTION = "auction"          # Collect and compare before resolving


@dataclass
class PaymentPreferences:
    """What the owner is willing to take in return."""
    booking_exchange: bool = True
    cash_accepted: bool = False
    minimum_cash_amount: Optional[Decimal] = None


@dataclass
class SwapOffer:
    """
    A listed reservation.

    Attributes:
        id: Swap identifier
        source_booking_id: Reservation being offered
        owner_id: Creator of the offer
        proposer_id: Counterpart; equals owner_id until a proposal is accepted
        status: Lifecycle status
        acceptance_strategy: first_match or auction
        preferences: Accepted payment types
        accepted_proposal_id: Proposal that resolved the swap
        target_booking_id: Booking received in exchange, if any
        target_cash_amount: Cash received in exchange, if any
        target_currency: Currency of target_cash_amount
    """
    source_booking_id: str
    owner_id: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    proposer_id: str = ""
    status: SwapStatus = SwapStatus.AVAILABLE
    acceptance_strategy: AcceptanceStrategy = AcceptanceStrategy.FIRST_MATCH
    preferences: PaymentPreferences = field(default_factory=PaymentPreferences)
    accepted_proposal_id: Optional[str] = None
    target_booking_id: Optional[str] = None
    target_cash_amount: Optional[Decimal] = None
    target_currency: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not self.proposer_id:
            self.proposer_id = self.owner_id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SWAP_STATUSES

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_SWAP_STATUSES

    @property
    def counterpart_id(self) -> Optional[str]:
        """The accepted counterpart, None while unresolved."""
        if self.proposer_id == self.owner_id:
            return None
        return self.proposer_id

    def accept(
        self,
        proposal_id: str,
        counterpart_id: str,
        booking_id: Optional[str] = None,
        cash_amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
    ) -> None:
        """Resolve the swap in favour of one proposal."""
        self.status = SwapStatus.ACCEPTED
        self.proposer_id = counterpart_id
        self.accepted_proposal_id = proposal_id
        self.target_booking_id = booking_id
        self.target_cash_amount = cash_amount
        self.target_currency = currency

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_booking_id": self.source_booking_id,
            "owner_id": self.owner_id,
            "proposer_id": self.proposer_id,
            "status": self.status.value,
            "acceptance_strategy": self.acceptance_strategy.value,
            "preferences": {
                "booking_exchange": self.preferences.booking_exchange,
                "cash_accepted": self.preferences.cash_accepted,
                "minimum_cash_amount": (
                    str(self.preferences.minimum_cash_amount)
                    if self.preferences.minimum_cash_amount is not None else None
                ),
            },
            "accepted_proposal_id": self.accepted_proposal_id,
            "target_booking_id": self.target_booking_id,
            "target_cash_amount": (
                str(self.target_cash_amount) if self.target_cash_amount is not None else None
            ),
            "target_currency": self.target_currency,
        }

    def __repr__(self) -> str:
        return (
            f"SwapOffer(id={self.id[:8]}, status={self.status.value}, "
            f"strategy={self.acceptance_strategy.value})"
        )
