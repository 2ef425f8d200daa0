"""
Unit tests for the repositories.

Every test runs against both the in-memory and the SQLite backend.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from swapmatch.core.auction.auction import Auction, AuctionSettings, AuctionStatus, EndReason
from swapmatch.core.auction.proposal import BookingOffer, CashOffer, Proposal, ProposalStatus
from swapmatch.core.errors import AuctionClosed, UniqueViolation
from swapmatch.core.storage import (
    AUCTION_PER_SWAP_CONSTRAINT, IDEMPOTENCY_CONSTRAINT, PENDING_BOOKING_CONSTRAINT,
    InMemoryRepository, SQLiteRepository,
)
from swapmatch.core.swap.offer import AcceptanceStrategy, PaymentPreferences, SwapOffer, SwapStatus


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
END = NOW + timedelta(days=10)


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        yield InMemoryRepository()
    else:
        repository = SQLiteRepository(tmp_path / "swapmatch.db")
        yield repository
        repository.close()


@pytest.fixture
def swap(repo):
    swap = SwapOffer(
        source_booking_id="b-owner", owner_id="owner", status=SwapStatus.PENDING,
        preferences=PaymentPreferences(cash_accepted=True, minimum_cash_amount=Decimal("150.00")),
        created_at=NOW,
    )
    repo.add_swap(swap)
    return swap


@pytest.fixture
def auction(repo, swap):
    auction = Auction(
        swap_id=swap.id,
        owner_id=swap.owner_id,
        settings=AuctionSettings(
            end_date=END, allow_cash_proposals=True,
            minimum_cash_offer=Decimal("200"), auto_select_after_hours=24,
        ),
        created_at=NOW,
    )
    swap.acceptance_strategy = AcceptanceStrategy.AUCTION
    repo.add_auction(auction, swap)
    return auction


def cash(auction, proposer="alice", amount="300", **kwargs):
    return Proposal(
        auction_id=auction.id, proposer_id=proposer,
        offer=CashOffer(Decimal(amount), "EUR", "pm-1", escrow_agreement=True),
        created_at=NOW, **kwargs,
    )


def booking(auction, proposer="alice", booking_id="b-1"):
    return Proposal(
        auction_id=auction.id, proposer_id=proposer, offer=BookingOffer(booking_id), created_at=NOW
    )


class TestSwaps:

    def test_round_trip(self, repo, swap):
        loaded = repo.get_swap(swap.id)
        assert loaded.owner_id == "owner"
        assert loaded.status == SwapStatus.PENDING
        assert loaded.preferences.minimum_cash_amount == Decimal("150.00")
        assert loaded.counterpart_id is None

    def test_missing(self, repo):
        assert repo.get_swap("nope") is None

    def test_duplicate_id(self, repo, swap):
        with pytest.raises(UniqueViolation):
            repo.add_swap(swap)

    def test_save(self, repo, swap):
        swap.status = SwapStatus.CANCELLED
        repo.save_swap(swap)
        assert repo.get_swap(swap.id).status == SwapStatus.CANCELLED
        assert len(repo.list_swaps()) == 1

    def test_returned_copies_are_detached(self, repo, swap):
        loaded = repo.get_swap(swap.id)
        loaded.status = SwapStatus.CANCELLED
        assert repo.get_swap(swap.id).status == SwapStatus.PENDING

    def test_conditional_status(self, repo, swap):
        assert not repo.update_swap_status(swap.id, SwapStatus.CANCELLED, SwapStatus.AVAILABLE)
        assert repo.update_swap_status(swap.id, SwapStatus.CANCELLED, SwapStatus.PENDING)
        assert repo.get_swap(swap.id).status == SwapStatus.CANCELLED
        assert not repo.update_swap_status("nope", SwapStatus.CANCELLED, SwapStatus.PENDING)

    def test_status_update_keeps_strategy(self, repo, auction, swap):
        assert repo.update_swap_status(swap.id, SwapStatus.AVAILABLE, SwapStatus.PENDING)
        assert repo.get_swap(swap.id).acceptance_strategy == AcceptanceStrategy.AUCTION

    def test_conditional_strategy(self, repo, auction, swap):
        assert not repo.update_swap_strategy(
            swap.id, AcceptanceStrategy.AUCTION, AcceptanceStrategy.FIRST_MATCH
        )
        assert repo.update_swap_strategy(
            swap.id, AcceptanceStrategy.FIRST_MATCH, AcceptanceStrategy.AUCTION
        )
        stored = repo.get_swap(swap.id)
        assert stored.acceptance_strategy == AcceptanceStrategy.FIRST_MATCH
        assert stored.status == SwapStatus.PENDING

    def test_strategy_frozen_once_resolved(self, repo, auction, swap):
        repo.update_swap_status(swap.id, SwapStatus.ACCEPTED, SwapStatus.PENDING)
        assert not repo.update_swap_strategy(
            swap.id, AcceptanceStrategy.FIRST_MATCH, AcceptanceStrategy.AUCTION
        )
        assert repo.get_swap(swap.id).acceptance_strategy == AcceptanceStrategy.AUCTION


class TestAuctions:

    def test_add_saves_swap_too(self, repo, auction, swap):
        assert repo.get_auction(auction.id).settings.minimum_cash_offer == Decimal("200")
        assert repo.get_auction_for_swap(swap.id).id == auction.id
        assert repo.get_swap(swap.id).acceptance_strategy == AcceptanceStrategy.AUCTION

    def test_one_per_swap(self, repo, auction, swap):
        second = Auction(swap_id=swap.id, owner_id="owner", settings=auction.settings)
        with pytest.raises(UniqueViolation) as exc:
            repo.add_auction(second, swap)
        assert exc.value.constraint == AUCTION_PER_SWAP_CONSTRAINT

    def test_end_once(self, repo, auction):
        assert repo.end_auction_if_active(auction.id, END, EndReason.TIMEOUT)
        assert not repo.end_auction_if_active(auction.id, END, EndReason.OWNER)

        stored = repo.get_auction(auction.id)
        assert stored.status == AuctionStatus.ENDED
        assert stored.end_reason == EndReason.TIMEOUT
        assert stored.ended_at == END

    def test_list_by_status(self, repo, auction):
        assert [a.id for a in repo.list_auctions(AuctionStatus.ACTIVE)] == [auction.id]
        assert repo.list_auctions(AuctionStatus.ENDED) == []
        repo.end_auction_if_active(auction.id, END, EndReason.OWNER)
        assert [a.id for a in repo.list_auctions(AuctionStatus.ENDED)] == [auction.id]

    def test_cancel(self, repo, auction):
        assert repo.cancel_auction(auction.id, NOW)
        stored = repo.get_auction(auction.id)
        assert stored.is_cancelled
        assert stored.status == AuctionStatus.ENDED

    def test_reminder_flag(self, repo, auction):
        repo.set_reminder_sent(auction.id)
        assert repo.get_auction(auction.id).reminder_sent


class TestProposals:

    def test_sequence_and_fields(self, repo, auction):
        first = repo.insert_proposal(cash(auction, idempotency_key="k"))
        second = repo.insert_proposal(booking(auction, proposer="bob"))

        assert 0 < first.sequence < second.sequence
        assert first.cash_amount == Decimal("300")
        assert first.holds_escrow
        assert first.idempotency_key == "k"
        assert second.booking_id == "b-1"
        assert [p.id for p in repo.list_proposals(auction.id)] == [first.id, second.id]

    def test_pending_booking_unique(self, repo, auction):
        repo.insert_proposal(booking(auction))
        with pytest.raises(UniqueViolation) as exc:
            repo.insert_proposal(booking(auction))
        assert exc.value.constraint == PENDING_BOOKING_CONSTRAINT

    def test_withdrawn_booking_frees_slot(self, repo, auction):
        first = repo.insert_proposal(booking(auction))
        assert repo.update_proposal_status(first.id, ProposalStatus.WITHDRAWN, ProposalStatus.PENDING)
        repo.insert_proposal(booking(auction))

    def test_idempotency_key_unique(self, repo, auction):
        repo.insert_proposal(cash(auction, idempotency_key="k"))
        with pytest.raises(UniqueViolation) as exc:
            repo.insert_proposal(cash(auction, idempotency_key="k"))
        assert exc.value.constraint == IDEMPOTENCY_CONSTRAINT
        assert repo.find_by_idempotency_key(auction.id, "alice", "k") is not None
        assert repo.find_by_idempotency_key(auction.id, "bob", "k") is None

    def test_conditional_status(self, repo, auction):
        stored = repo.insert_proposal(cash(auction))
        assert not repo.update_proposal_status(stored.id, ProposalStatus.REJECTED, ProposalStatus.WITHDRAWN)
        assert repo.update_proposal_status(stored.id, ProposalStatus.REJECTED)
        assert repo.get_proposal(stored.id).status == ProposalStatus.REJECTED

    def test_insert_after_end_rejected(self, repo, auction):
        repo.end_auction_if_active(auction.id, END, EndReason.OWNER)
        with pytest.raises(AuctionClosed) as exc:
            repo.insert_proposal(cash(auction))
        assert exc.value.auction_id == auction.id
        assert repo.list_proposals(auction.id) == []

    def test_insert_after_cancel_rejected(self, repo, auction):
        repo.cancel_auction(auction.id, NOW)
        with pytest.raises(AuctionClosed):
            repo.insert_proposal(booking(auction))
        assert repo.list_proposals(auction.id) == []


class TestCommitWinner:

    def _accept(self, swap, proposal):
        swap.accept(proposal.id, proposal.proposer_id, cash_amount=proposal.cash_amount, currency="EUR")
        return swap

    def test_requires_ended(self, repo, auction, swap):
        winner = repo.insert_proposal(cash(auction))
        assert not repo.commit_winner(auction.id, winner.id, self._accept(swap, winner), False)
        assert repo.get_swap(swap.id).status == SwapStatus.PENDING

    def test_commits_once(self, repo, auction, swap):
        winner = repo.insert_proposal(cash(auction, amount="300"))
        loser = repo.insert_proposal(cash(auction, proposer="bob", amount="250"))
        repo.end_auction_if_active(auction.id, END, EndReason.TIMEOUT)

        assert repo.commit_winner(auction.id, winner.id, self._accept(swap, winner), True)
        assert not repo.commit_winner(auction.id, loser.id, self._accept(swap, loser), False)

        stored = repo.get_auction(auction.id)
        assert stored.winning_proposal_id == winner.id
        assert stored.auto_selected
        assert repo.get_proposal(winner.id).status == ProposalStatus.ACCEPTED
        assert repo.get_proposal(loser.id).status == ProposalStatus.REJECTED

        saved = repo.get_swap(swap.id)
        assert saved.status == SwapStatus.ACCEPTED
        assert saved.counterpart_id == "alice"
        assert saved.target_cash_amount == Decimal("300")

    def test_not_after_cancel(self, repo, auction, swap):
        winner = repo.insert_proposal(cash(auction))
        repo.cancel_auction(auction.id, NOW)
        assert not repo.commit_winner(auction.id, winner.id, self._accept(swap, winner), False)

    def test_not_for_withdrawn(self, repo, auction, swap):
        withdrawn = repo.insert_proposal(cash(auction))
        repo.update_proposal_status(withdrawn.id, ProposalStatus.WITHDRAWN)
        repo.end_auction_if_active(auction.id, END, EndReason.OWNER)

        assert not repo.commit_winner(auction.id, withdrawn.id, self._accept(swap, withdrawn), False)
        assert repo.get_auction(auction.id).winning_proposal_id is None

    def test_no_winner_after_cancel_commit(self, repo, auction, swap):
        winner = repo.insert_proposal(cash(auction))
        repo.end_auction_if_active(auction.id, END, EndReason.OWNER)
        repo.commit_winner(auction.id, winner.id, self._accept(swap, winner), False)
        assert not repo.cancel_auction(auction.id, NOW)
