"""
Proposals - counter-offers submitted against an auction.

A proposal carries exactly one offer variant:
- BookingOffer: the proposer's own reservation in exchange
- CashOffer: an amount of money, optionally held in escrow

Status changes only through winner selection, withdrawal, or cancellation
of the owning swap.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Union


class ProposalType(str, Enum):
    """Offer variant tag."""
    BOOKING = "booking"
    CASH = "cash"


class ProposalStatus(str, Enum):
    """Status of a proposal."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


@dataclass(frozen=True)
class BookingOffer:
    """Exchange offer: the proposer's own booking."""
    booking_id: str

    @property
    def proposal_type(self) -> ProposalType:
        return ProposalType.BOOKING


@dataclass(frozen=True)
class CashOffer:
    """Cash offer, optionally backed by escrow."""
    amount: Decimal
    currency: str
    payment_method_id: str
    escrow_agreement: bool = False

    @property
    def proposal_type(self) -> ProposalType:
        return ProposalType.CASH


Offer = Union[BookingOffer, CashOffer]


@dataclass
class Proposal:
    """
    A counter-offer in one auction.

    Attributes:
        auction_id: Auction this proposal belongs to
        proposer_id: Submitting user
        offer: BookingOffer or CashOffer
        message: Free text for the owner
        conditions: Proposer's conditions, in submission order
        status: Current status
        id: Proposal identifier
        created_at: Submission time
        sequence: Storage-assigned insertion order (0 until stored)
        idempotency_key: Caller-supplied retry key, if any
    """
    auction_id: str
    proposer_id: str
    offer: Offer
    message: str = ""
    conditions: List[str] = field(default_factory=list)
    status: ProposalStatus = ProposalStatus.PENDING
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sequence: int = 0
    idempotency_key: Optional[str] = None

    @property
    def proposal_type(self) -> ProposalType:
        return self.offer.proposal_type

    @property
    def is_pending(self) -> bool:
        return self.status == ProposalStatus.PENDING

    @property
    def booking_id(self) -> Optional[str]:
        if isinstance(self.offer, BookingOffer):
            return self.offer.booking_id
        return None

    @property
    def cash_amount(self) -> Optional[Decimal]:
        if isinstance(self.offer, CashOffer):
            return self.offer.amount
        return None

    @property
    def holds_escrow(self) -> bool:
        return isinstance(self.offer, CashOffer) and self.offer.escrow_agreement

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "auction_id": self.auction_id,
            "proposer_id": self.proposer_id,
            "proposal_type": self.proposal_type.value,
            "message": self.message,
            "conditions": list(self.conditions),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "sequence": self.sequence,
        }
        if isinstance(self.offer, BookingOffer):
            data["booking_id"] = self.offer.booking_id
        elif isinstance(self.offer, CashOffer):
            data["cash_offer"] = {
                "amount": str(self.offer.amount),
                "currency": self.offer.currency,
                "payment_method_id": self.offer.payment_method_id,
                "escrow_agreement": self.offer.escrow_agreement,
            }
        else:
            raise TypeError(f"Unknown offer variant: {type(self.offer).__name__}")
        return data

    def __repr__(self) -> str:
        return (
            f"Proposal(id={self.id[:8]}, type={self.proposal_type.value}, "
            f"status={self.status.value}, seq={self.sequence})"
        )
