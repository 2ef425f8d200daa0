"""Tests for automatic winner selection."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from swapmatch.core.auction.auction import AuctionSettings
from swapmatch.core.auction.proposal import (
    BookingOffer, CashOffer, Proposal, ProposalStatus
)
from swapmatch.core.auction.selection import WinnerSelectionPolicy, cash_key


END = datetime(2026, 6, 1, tzinfo=timezone.utc)
CASH_ALLOWED = AuctionSettings(end_date=END, allow_cash_proposals=True)
BOOKINGS_ONLY = AuctionSettings(end_date=END, allow_cash_proposals=False)


def cash(amount: str, sequence: int, status=ProposalStatus.PENDING) -> Proposal:
    return Proposal(
        auction_id="a", proposer_id=f"p{sequence}",
        offer=CashOffer(Decimal(amount), "EUR", "pm"), sequence=sequence, status=status,
    )


def booking(sequence: int, status=ProposalStatus.PENDING) -> Proposal:
    return Proposal(
        auction_id="a", proposer_id=f"p{sequence}",
        offer=BookingOffer(f"b{sequence}"), sequence=sequence, status=status,
    )


@pytest.fixture
def policy():
    return WinnerSelectionPolicy()


class TestCashKey:

    def test_higher_amount_ranks_first(self):
        assert cash_key(cash("300", 2)) > cash_key(cash("250", 1))

    def test_earlier_wins_ties(self):
        assert cash_key(cash("300", 1)) > cash_key(cash("300", 2))

    def test_max_picks_winner(self):
        offers = [cash("250", 1), cash("300", 3), cash("300", 2)]
        assert max(offers, key=cash_key).sequence == 2


class TestSelectAutomatic:
    """Automatic choice among pending proposals."""

    def test_empty(self, policy):
        assert policy.select_automatic([], CASH_ALLOWED) is None

    def test_highest_cash(self, policy):
        winner = policy.select_automatic([cash("250", 1), cash("300", 2), booking(0)], CASH_ALLOWED)
        assert winner.cash_amount == Decimal("300")

    def test_cash_tie_goes_to_earliest(self, policy):
        winner = policy.select_automatic([cash("300", 5), cash("300", 3)], CASH_ALLOWED)
        assert winner.sequence == 3

    def test_earliest_booking_without_cash(self, policy):
        winner = policy.select_automatic([booking(4), booking(2), booking(9)], CASH_ALLOWED)
        assert winner.sequence == 2

    def test_cash_ignored_when_not_allowed(self, policy):
        winner = policy.select_automatic([cash("900", 1), booking(3)], BOOKINGS_ONLY)
        assert winner.sequence == 3

    def test_only_cash_and_cash_not_allowed(self, policy):
        assert policy.select_automatic([cash("900", 1)], BOOKINGS_ONLY) is None

    def test_non_pending_ignored(self, policy):
        proposals = [
            cash("900", 1, status=ProposalStatus.WITHDRAWN),
            cash("300", 2),
            booking(0, status=ProposalStatus.REJECTED),
        ]
        assert policy.select_automatic(proposals, CASH_ALLOWED).sequence == 2

    def test_order_independent(self, policy):
        proposals = [cash("250", 1), cash("400", 4), cash("400", 2), booking(0)]
        forward = policy.select_automatic(proposals, CASH_ALLOWED)
        backward = policy.select_automatic(list(reversed(proposals)), CASH_ALLOWED)
        assert forward.sequence == backward.sequence == 2
