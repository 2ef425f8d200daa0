"""
Auction records - the bidding process attached to one swap offer.

States:
- ACTIVE: accepting proposals until settings.end_date
- ENDED: closed; a winner may be assigned once, atomically
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional


class AuctionStatus(str, Enum):
    """State of an auction."""
    ACTIVE = "active"
    ENDED = "ended"


class EndReason(str, Enum):
    """Why an auction left the ACTIVE state."""
    OWNER = "owner"          # Explicit end_auction call
    TIMEOUT = "timeout"      # Sweeper saw end_date pass
    CANCELLED = "cancelled"  # Owning swap was cancelled
    CONVERTED = "converted"  # Converted to first-match near the event


@dataclass(frozen=True)
class AuctionSettings:
    """Owner-chosen auction parameters."""
    end_date: datetime
    allow_booking_proposals: bool = True
    allow_cash_proposals: bool = False
    minimum_cash_offer: Optional[Decimal] = None
    auto_select_after_hours: Optional[int] = None

    @property
    def auto_select_deadline(self) -> Optional[datetime]:
        """Time after which automatic selection replaces manual choice."""
        if self.auto_select_after_hours is None:
            return None
        return self.end_date + timedelta(hours=self.auto_select_after_hours)

    def to_dict(self) -> dict:
        return {
            "end_date": self.end_date.isoformat(),
            "allow_booking_proposals": self.allow_booking_proposals,
            "allow_cash_proposals": self.allow_cash_proposals,
            "minimum_cash_offer": (
                str(self.minimum_cash_offer) if self.minimum_cash_offer is not None else None
            ),
            "auto_select_after_hours": self.auto_select_after_hours,
        }


@dataclass
class Auction:
    """
    Auction for a single swap offer.

    Attributes:
        swap_id: Owning swap offer
        owner_id: Owner of the swap (only actor allowed to end/select)
        settings: AuctionSettings
        status: ACTIVE or ENDED
        winning_proposal_id: Set at most once
        auto_selected: True when the winner came from automatic selection
        ended_at: Time of the ACTIVE -> ENDED transition
        end_reason: Why the auction ended
        reminder_sent: Owner was reminded to pick a winner
    """
    swap_id: str
    owner_id: str
    settings: AuctionSettings
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: AuctionStatus = AuctionStatus.ACTIVE
    winning_proposal_id: Optional[str] = None
    auto_selected: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None
    end_reason: Optional[EndReason] = None
    reminder_sent: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == AuctionStatus.ACTIVE

    @property
    def is_cancelled(self) -> bool:
        return self.end_reason == EndReason.CANCELLED

    @property
    def has_winner(self) -> bool:
        return self.winning_proposal_id is not None

    def is_expired(self, now: datetime) -> bool:
        """Whether the bidding window has closed."""
        return now >= self.settings.end_date

    def auto_select_due(self, now: datetime) -> bool:
        deadline = self.settings.auto_select_deadline
        return deadline is not None and now >= deadline

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "swap_id": self.swap_id,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "settings": self.settings.to_dict(),
            "winning_proposal_id": self.winning_proposal_id,
            "auto_selected": self.auto_selected,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "end_reason": self.end_reason.value if self.end_reason else None,
        }

    def __repr__(self) -> str:
        return (
            f"Auction(id={self.id[:8]}, status={self.status.value}, "
            f"winner={self.winning_proposal_id[:8] if self.winning_proposal_id else None})"
        )
