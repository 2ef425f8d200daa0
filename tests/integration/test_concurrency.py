"""
Concurrency tests.

Races that must resolve to a single outcome:
1. Identical booking proposals submitted at once
2. Several winners selected at once
3. Owner selection racing the sweeper
4. Auction operations waiting on the swap lock
5. Two engines (separate lock registries) sharing one SQLite database
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from conftest import ALICE, BOB, CAROL, END, OWNER, FakeClock, booking_body, cash_body, make_booking, settings_body
from swapmatch.core.auction.proposal import ProposalStatus
from swapmatch.core.collaborators import InMemoryBookingDirectory, RecordingEscrow
from swapmatch.core.engine import build_engine
from swapmatch.core.storage import SQLiteRepository
from swapmatch.core.swap.offer import SwapStatus


WORKERS = 8


class ClosingEscrow(RecordingEscrow):
    """Runs `before_hold` once, just before the next escrow hold."""

    def __init__(self):
        super().__init__()
        self.before_hold = None

    def create_escrow(self, proposal_id, amount, currency, payment_method_id):
        hook, self.before_hold = self.before_hold, None
        if hook is not None:
            hook()
        return super().create_escrow(proposal_id, amount, currency, payment_method_id)


def race(calls):
    """Run callables together, released by a barrier. Returns their results."""
    barrier = threading.Barrier(len(calls))

    def run(call):
        barrier.wait()
        return call()

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(run, calls))


class TestInProcess:

    def test_duplicate_booking_proposals(self, engine, auction, directory):
        booking = directory.add(make_booking(ALICE))
        results = race([
            lambda: engine.auctions.submit_proposal(auction.id, ALICE, booking_body(booking.id))
            for _ in range(WORKERS)
        ])

        assert sum(1 for r in results if r.ok) == 1
        assert {r.code for r in results if not r.ok} == {"DUPLICATE_PROPOSAL"}
        assert len(engine.auctions.ledger(auction.id)) == 1

    def test_idempotent_retries(self, engine, auction, escrow):
        results = race([
            lambda: engine.auctions.submit_proposal(
                auction.id, BOB, cash_body("300", idempotency_key="same")
            )
            for _ in range(WORKERS)
        ])

        assert all(r.ok for r in results)
        assert len({r.value.id for r in results}) == 1
        assert len(escrow.records) == 1

    def test_concurrent_select_winner(self, engine, auction):
        proposals = [
            engine.auctions.submit_proposal(auction.id, bidder, cash_body(amount)).value
            for bidder, amount in ((ALICE, "250"), (BOB, "300"), (CAROL, "275"))
        ]
        engine.auctions.end_auction(auction.id, OWNER)

        results = race([
            (lambda p=p: engine.auctions.select_winner(auction.id, OWNER, p.id))
            for p in proposals
        ])

        winners = [r for r in results if r.ok]
        assert len(winners) == 1
        assert {r.code for r in results if not r.ok} == {"WINNER_ALREADY_SELECTED"}

        winner_id = winners[0].value.winning_proposal_id
        statuses = {p.id: engine.repository.get_proposal(p.id).status for p in proposals}
        assert statuses[winner_id] == ProposalStatus.ACCEPTED
        assert sum(1 for s in statuses.values() if s == ProposalStatus.ACCEPTED) == 1

    def test_owner_races_sweeper(self, engine, auction):
        low = engine.auctions.submit_proposal(auction.id, ALICE, cash_body("250")).value
        engine.auctions.submit_proposal(auction.id, BOB, cash_body("300"))
        engine.auctions.end_auction(auction.id, OWNER)
        late = END + timedelta(days=2)

        results = race([
            lambda: engine.auctions.select_winner(auction.id, OWNER, low.id),
            lambda: engine.sweeper.sweep(late),
        ])

        select_result, report = results
        final = engine.repository.get_auction(auction.id)
        assert final.has_winner
        assert report.ok
        if select_result.ok:
            assert final.winning_proposal_id == low.id
        else:
            assert select_result.code == "WINNER_ALREADY_SELECTED"
            assert final.auto_selected

    def test_concurrent_sweeps(self, engine, auction, notifier):
        engine.auctions.submit_proposal(auction.id, ALICE, cash_body("300"))
        late = END + timedelta(days=2)

        reports = race([lambda: engine.sweeper.sweep(late) for _ in range(4)])

        assert all(r.ok for r in reports)
        assert sum(len(r.resolved) for r in reports) == 1
        assert notifier.events_for(ALICE).count("auction_won") == 1

    def test_auction_waits_for_swap_lock(self, engine, auction):
        bid = engine.auctions.submit_proposal(auction.id, ALICE, cash_body("300")).value
        engine.auctions.end_auction(auction.id, OWNER)
        done = threading.Event()

        def select():
            result = engine.auctions.select_winner(auction.id, OWNER, bid.id)
            done.set()
            return result

        with ThreadPoolExecutor(max_workers=1) as pool:
            with engine.auctions.locks.hold(auction.swap_id):
                future = pool.submit(select)
                assert not done.wait(0.2)
            assert future.result(timeout=5).ok
        assert engine.repository.get_swap(auction.swap_id).status == SwapStatus.ACCEPTED


class TestSharedDatabase:
    """Storage constraints hold without a shared lock registry."""

    @pytest.fixture
    def engines(self, tmp_path, config):
        clock = FakeClock()
        directory = InMemoryBookingDirectory()
        escrow = ClosingEscrow()
        db_path = tmp_path / "shared.db"
        repos = [SQLiteRepository(db_path) for _ in range(2)]
        engines = [
            build_engine(repository=repo, bookings=directory, escrow=escrow, config=config, clock=clock)
            for repo in repos
        ]
        yield engines, directory

    def test_duplicate_booking_across_engines(self, engines):
        (a, b), directory = engines
        owner_booking = directory.add(make_booking(OWNER))
        swap = a.swaps.create_swap(OWNER, {"source_booking_id": owner_booking.id}).value
        auction = a.auctions.create_auction(swap.id, OWNER, settings_body()).value
        booking = directory.add(make_booking(ALICE))

        results = race([
            lambda: a.auctions.submit_proposal(auction.id, ALICE, booking_body(booking.id)),
            lambda: b.auctions.submit_proposal(auction.id, ALICE, booking_body(booking.id)),
        ])

        assert sum(1 for r in results if r.ok) == 1
        assert [r.code for r in results if not r.ok] == ["DUPLICATE_PROPOSAL"]
        assert len(a.repository.list_proposals(auction.id)) == 1

    def test_winner_across_engines(self, engines):
        (a, b), directory = engines
        owner_booking = directory.add(make_booking(OWNER))
        swap = a.swaps.create_swap(OWNER, {"source_booking_id": owner_booking.id}).value
        auction = a.auctions.create_auction(swap.id, OWNER, settings_body()).value
        first = a.auctions.submit_proposal(auction.id, ALICE, cash_body("250")).value
        second = a.auctions.submit_proposal(auction.id, BOB, cash_body("300")).value
        a.auctions.end_auction(auction.id, OWNER)

        results = race([
            lambda: a.auctions.select_winner(auction.id, OWNER, first.id),
            lambda: b.auctions.select_winner(auction.id, OWNER, second.id),
        ])

        assert sum(1 for r in results if r.ok) == 1
        assert [r.code for r in results if not r.ok] == ["WINNER_ALREADY_SELECTED"]
        winner = a.repository.get_auction(auction.id).winning_proposal_id
        assert a.repository.get_swap(swap.id).accepted_proposal_id == winner

    def test_submit_after_other_engine_closes(self, engines):
        (a, b), directory = engines
        owner_booking = directory.add(make_booking(OWNER))
        swap = a.swaps.create_swap(OWNER, {"source_booking_id": owner_booking.id}).value
        auction = a.auctions.create_auction(swap.id, OWNER, settings_body()).value
        first = b.auctions.submit_proposal(auction.id, BOB, cash_body("250")).value

        def close_on_b():
            b.auctions.end_auction(auction.id, OWNER)
            b.auctions.select_winner(auction.id, OWNER, first.id)

        escrow = a.auctions.escrow
        escrow.before_hold = close_on_b
        result = a.auctions.submit_proposal(auction.id, ALICE, cash_body("300"))

        assert result.code == "AUCTION_NOT_ACTIVE"
        assert [p.id for p in a.repository.list_proposals(auction.id)] == [first.id]
        late = [pid for pid in escrow.records if pid != first.id]
        assert len(late) == 1
        assert escrow.state_of(late[0]) == "refunded"
        assert a.repository.get_auction(auction.id).winning_proposal_id == first.id
        assert a.repository.get_swap(swap.id).accepted_proposal_id == first.id
