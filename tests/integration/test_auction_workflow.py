"""
End-to-end auction workflows through the engine's public services.
"""

from datetime import timedelta
from decimal import Decimal

from conftest import ALICE, BOB, CAROL, END, OWNER, booking_body, cash_body, make_booking
from swapmatch.core.auction.lifecycle import ResolutionAction
from swapmatch.core.auction.proposal import ProposalStatus
from swapmatch.core.swap.offer import AcceptanceStrategy, SwapStatus


class TestAutomaticResolution:
    """Bids come in, nobody acts, the sweeper resolves the auction."""

    def test_highest_cash_wins(self, engine, auction, listed_swap, escrow, notifier, clock):
        a = engine.auctions.submit_proposal(auction.id, ALICE, cash_body("250")).value
        b = engine.auctions.submit_proposal(auction.id, BOB, cash_body("300")).value
        rejected = engine.auctions.submit_proposal(auction.id, CAROL, cash_body("150"))
        assert rejected.code == "CASH_OFFER_BELOW_MINIMUM"

        clock.now = END + timedelta(hours=24)
        report = engine.sweeper.sweep()
        assert report.ok
        assert report.count(ResolutionAction.AUTO_SELECTED) == 1

        swap = engine.repository.get_swap(listed_swap.id)
        assert swap.status == SwapStatus.ACCEPTED
        assert swap.counterpart_id == BOB
        assert swap.accepted_proposal_id == b.id
        assert swap.target_cash_amount == Decimal("300")

        assert engine.repository.get_proposal(a.id).status == ProposalStatus.REJECTED
        assert escrow.state_of(a.id) == "refunded"
        assert escrow.state_of(b.id) == "held"

        assert "auction_won" in notifier.events_for(BOB)
        assert "auction_lost" in notifier.events_for(ALICE)
        assert "auto_selection" in notifier.events_for(OWNER)

        # Completion releases the winner's escrow
        assert engine.swaps.complete_swap(listed_swap.id, OWNER).ok
        assert escrow.state_of(b.id) == "released"

    def test_booking_only_auction(self, engine, directory, listed_swap):
        auction = engine.auctions.create_auction(listed_swap.id, OWNER, {
            "end_date": END.isoformat(), "auto_select_after_hours": 12,
        }).value
        first = directory.add(make_booking(ALICE))
        second = directory.add(make_booking(BOB))
        early = engine.auctions.submit_proposal(auction.id, ALICE, booking_body(first.id)).value
        engine.auctions.submit_proposal(auction.id, BOB, booking_body(second.id))

        report = engine.sweeper.sweep(END + timedelta(hours=12))
        assert report.resolved[0].winning_proposal_id == early.id
        assert engine.repository.get_swap(listed_swap.id).target_booking_id == first.id


class TestOwnerResolution:

    def test_owner_picks_before_deadline(self, engine, auction, listed_swap, directory):
        booking = directory.add(make_booking(CAROL))
        exchange = engine.auctions.submit_proposal(auction.id, CAROL, booking_body(booking.id)).value
        engine.auctions.submit_proposal(auction.id, BOB, cash_body("900"))

        engine.sweeper.sweep(END)
        assert engine.auctions.select_winner(auction.id, OWNER, exchange.id).ok

        report = engine.sweeper.sweep(END + timedelta(days=3))
        assert report.resolved == []
        swap = engine.repository.get_swap(listed_swap.id)
        assert swap.counterpart_id == CAROL
        assert swap.target_booking_id == booking.id


class TestFallback:

    def test_empty_auction_falls_back_to_first_match(self, engine, auction, listed_swap):
        report = engine.sweeper.sweep(END + timedelta(minutes=1))
        assert report.count(ResolutionAction.DOWNGRADED) == 1

        swap = engine.repository.get_swap(listed_swap.id)
        assert swap.acceptance_strategy == AcceptanceStrategy.FIRST_MATCH
        assert engine.swaps.submit_direct_proposal(listed_swap.id, ALICE, cash_body("50")).ok

    def test_withdrawn_bids_leave_nothing_to_select(self, engine, auction, listed_swap, escrow):
        proposal = engine.auctions.submit_proposal(auction.id, ALICE, cash_body("300")).value
        engine.auctions.withdraw_proposal(auction.id, proposal.id, ALICE)

        report = engine.sweeper.sweep(END + timedelta(days=2))
        assert report.count(ResolutionAction.DOWNGRADED) == 1
        assert escrow.state_of(proposal.id) == "refunded"
        assert engine.repository.get_auction(auction.id).winning_proposal_id is None
