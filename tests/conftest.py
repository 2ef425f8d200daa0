"""Shared fixtures for SwapMatch tests."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from swapmatch.core.collaborators import Booking, InMemoryBookingDirectory, LoggingNotifier, RecordingEscrow
from swapmatch.core.config import EngineConfig
from swapmatch.core.engine import build_engine
from swapmatch.core.storage.repository import InMemoryRepository


START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
EVENT = START + timedelta(days=40)
END = START + timedelta(days=10)

OWNER = "owner"
ALICE = "alice"
BOB = "bob"
CAROL = "carol"


class FakeClock:
    """Settable clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_booking(owner_id: str, **overrides) -> Booking:
    fields = dict(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        location="London, UK",
        check_in=EVENT,
        check_out=EVENT + timedelta(days=5),
        total_price=Decimal("1000"),
        accommodation_type="hotel",
        guests=2,
    )
    fields.update(overrides)
    return Booking(**fields)


def cash_body(amount: str, **overrides) -> dict:
    body = {
        "proposal_type": "cash",
        "amount": amount,
        "currency": "EUR",
        "payment_method_id": "pm-1",
        "escrow_agreement": True,
    }
    body.update(overrides)
    return body


def booking_body(booking_id: str, **overrides) -> dict:
    body = {"proposal_type": "booking", "booking_id": booking_id}
    body.update(overrides)
    return body


def settings_body(**overrides) -> dict:
    body = {
        "end_date": END.isoformat(),
        "allow_booking_proposals": True,
        "allow_cash_proposals": True,
        "minimum_cash_offer": "200",
        "auto_select_after_hours": 24,
    }
    body.update(overrides)
    return body


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def directory():
    return InMemoryBookingDirectory()


@pytest.fixture
def escrow():
    return RecordingEscrow()


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def config(tmp_path):
    return EngineConfig(data_dir=tmp_path / "data", log_dir=tmp_path / "logs")


@pytest.fixture
def engine(repository, directory, escrow, notifier, config, clock):
    return build_engine(
        repository=repository,
        bookings=directory,
        escrow=escrow,
        notifier=notifier,
        config=config,
        clock=clock,
    )


@pytest.fixture
def listed_swap(engine, directory):
    """An owner's swap, published, with no auction yet."""
    booking = directory.add(make_booking(OWNER))
    swap = engine.swaps.create_swap(OWNER, {"source_booking_id": booking.id, "cash_accepted": True}).value
    return engine.swaps.publish_swap(swap.id, OWNER).value


@pytest.fixture
def auction(engine, listed_swap):
    """Active auction accepting bookings and cash (minimum 200, auto-select after 24h)."""
    result = engine.auctions.create_auction(listed_swap.id, OWNER, settings_body())
    assert result.ok, result.error
    return result.value
