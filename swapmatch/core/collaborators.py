"""
Collaborator interfaces consumed by the engine.

The engine never owns bookings, money movement, or message delivery. It
reaches them through these protocols:
- BookingLookup: booking details and ownership by id
- EscrowService: hold / release / refund of cash-proposal funds
- NotificationDispatcher: fire-and-forget user notifications

In-memory implementations are provided for tests, the CLI demo and
single-process deployments.
"""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from swapmatch.utils.logger import get_logger

logger = get_logger("collaborators")


# =============================================================================
# Booking
# =============================================================================


@dataclass
class Booking:
    """
    A reservation as reported by the booking service.

    Detail fields are optional; the compatibility scorer rejects bookings
    missing the data it needs instead of guessing.
    """
    id: str
    owner_id: str
    status: str = "available"
    location: Optional[str] = None
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None
    total_price: Optional[Decimal] = None
    accommodation_type: Optional[str] = None
    guests: Optional[int] = None

    @property
    def is_available(self) -> bool:
        return self.status == "available"


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class BookingLookup(Protocol):
    """Booking service lookup. Returns None when the booking does not exist."""

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        ...


@runtime_checkable
class EscrowService(Protocol):
    """Payment collaborator holding cash-proposal funds, keyed by proposal id."""

    def create_escrow(
        self, proposal_id: str, amount: Decimal, currency: str, payment_method_id: str
    ) -> str:
        ...

    def release_escrow(self, proposal_id: str) -> None:
        ...

    def refund_escrow(self, proposal_id: str) -> None:
        ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Fire-and-forget notification delivery."""

    def notify(self, event: str, recipient_id: str, payload: Dict[str, Any]) -> None:
        ...


class CollaboratorError(Exception):
    """Raised by in-memory collaborators configured to fail."""


# =============================================================================
# In-memory implementations
# =============================================================================


class InMemoryBookingDirectory:
    """Dict-backed BookingLookup."""

    def __init__(self, bookings: Optional[List[Booking]] = None):
        self._bookings: Dict[str, Booking] = {}
        self._lock = threading.Lock()
        self.fail = False
        for booking in bookings or []:
            self.add(booking)

    def add(self, booking: Booking) -> Booking:
        with self._lock:
            self._bookings[booking.id] = booking
        return booking

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        if self.fail:
            raise CollaboratorError("booking service unavailable")
        with self._lock:
            return self._bookings.get(booking_id)

    def __len__(self) -> int:
        return len(self._bookings)


@dataclass
class EscrowRecord:
    """One escrow hold."""
    escrow_id: str
    proposal_id: str
    amount: Decimal
    currency: str
    payment_method_id: str
    state: str = "held"  # held | released | refunded


class RecordingEscrow:
    """
    EscrowService that records holds in memory.

    Release and refund are idempotent per proposal. Setting `fail` makes
    every call raise CollaboratorError.
    """

    def __init__(self):
        self.records: Dict[str, EscrowRecord] = {}
        self._lock = threading.Lock()
        self.fail = False

    def create_escrow(
        self, proposal_id: str, amount: Decimal, currency: str, payment_method_id: str
    ) -> str:
        if self.fail:
            raise CollaboratorError("escrow service unavailable")
        with self._lock:
            record = EscrowRecord(
                escrow_id=str(uuid.uuid4()),
                proposal_id=proposal_id,
                amount=amount,
                currency=currency,
                payment_method_id=payment_method_id,
            )
            self.records[proposal_id] = record
        logger.debug(f"Escrow held: proposal={proposal_id[:8]}, {amount} {currency}")
        return record.escrow_id

    def _transition(self, proposal_id: str, state: str) -> None:
        if self.fail:
            raise CollaboratorError("escrow service unavailable")
        with self._lock:
            record = self.records.get(proposal_id)
            if record is None:
                raise CollaboratorError(f"no escrow for proposal {proposal_id}")
            if record.state == "held":
                record.state = state
            elif record.state != state:
                raise CollaboratorError(f"escrow already {record.state}")

    def release_escrow(self, proposal_id: str) -> None:
        self._transition(proposal_id, "released")
        logger.debug(f"Escrow released: proposal={proposal_id[:8]}")

    def refund_escrow(self, proposal_id: str) -> None:
        self._transition(proposal_id, "refunded")
        logger.debug(f"Escrow refunded: proposal={proposal_id[:8]}")

    def state_of(self, proposal_id: str) -> Optional[str]:
        record = self.records.get(proposal_id)
        return record.state if record else None


class LoggingNotifier:
    """NotificationDispatcher that logs and keeps a list of sent notifications."""

    def __init__(self):
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def notify(self, event: str, recipient_id: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.sent.append((event, recipient_id, dict(payload)))
        logger.info(f"Notify {event} -> {recipient_id}")

    def events_for(self, recipient_id: str) -> List[str]:
        return [event for event, recipient, _ in self.sent if recipient == recipient_id]


def dispatch(
    notifier: NotificationDispatcher,
    event: str,
    recipient_id: str,
    payload: Dict[str, Any],
) -> None:
    """
    Deliver a notification without letting delivery failures escape.

    Notifications are fire-and-forget: a failing dispatcher is logged and
    never affects the state transition that produced the event.
    """
    try:
        notifier.notify(event, recipient_id, payload)
    except Exception as e:
        logger.error(f"Notification {event} to {recipient_id} failed: {e}")
