"""
Tests for the timeout sweeper.

These tests verify:
1. Expired auctions are ended and resolved
2. Sweeps are idempotent
3. Auctions whose event moved too close are converted
4. Collaborator failures are reported, conflicts are not
5. PeriodicSweeper ticks and stops
"""

from datetime import timedelta

import pytest

from conftest import ALICE, BOB, END, OWNER, START, cash_body
from swapmatch.core.auction.lifecycle import ResolutionAction
from swapmatch.core.auction.sweeper import PeriodicSweeper, SweepReport
from swapmatch.core.errors import StorageError
from swapmatch.core.swap.offer import AcceptanceStrategy


def bid(engine, auction, proposer, amount):
    result = engine.auctions.submit_proposal(auction.id, proposer, cash_body(amount))
    assert result.ok, result.error
    return result.value


class TestSweep:
    """Single sweeps."""

    def test_nothing_due(self, engine, auction):
        report = engine.sweeper.sweep(START + timedelta(days=1))
        assert report.ok
        assert report.resolved == []

    def test_ends_then_auto_selects(self, engine, auction):
        bid(engine, auction, ALICE, "250")
        best = bid(engine, auction, BOB, "300")

        first = engine.sweeper.sweep(END + timedelta(hours=1))
        assert [r.action for r in first.resolved] == [ResolutionAction.ENDED]

        second = engine.sweeper.sweep(END + timedelta(hours=24))
        assert second.count(ResolutionAction.AUTO_SELECTED) == 1
        assert second.resolved[0].winning_proposal_id == best.id

    def test_single_late_sweep_resolves(self, engine, auction):
        best = bid(engine, auction, BOB, "300")
        report = engine.sweeper.sweep(END + timedelta(hours=25))
        assert report.resolved[0].action == ResolutionAction.AUTO_SELECTED
        assert report.resolved[0].winning_proposal_id == best.id

    def test_naive_time_read_as_utc(self, engine, auction):
        best = bid(engine, auction, BOB, "300")
        report = engine.sweeper.sweep((END + timedelta(hours=25)).replace(tzinfo=None))
        assert report.ok
        assert report.resolved[0].winning_proposal_id == best.id

    def test_repeat_sweep_is_noop(self, engine, auction):
        bid(engine, auction, ALICE, "300")
        late = END + timedelta(days=2)
        engine.sweeper.sweep(late)
        again = engine.sweeper.sweep(late)
        assert again.ok
        assert again.resolved == []

    def test_downgrade(self, engine, auction, listed_swap):
        report = engine.sweeper.sweep(END)
        assert report.count(ResolutionAction.DOWNGRADED) == 1
        swap = engine.repository.get_swap(listed_swap.id)
        assert swap.acceptance_strategy == AcceptanceStrategy.FIRST_MATCH

    def test_skips_resolved_and_cancelled(self, engine, auction, listed_swap):
        bid(engine, auction, ALICE, "300")
        engine.swaps.cancel_swap(listed_swap.id, OWNER)
        report = engine.sweeper.sweep(END + timedelta(days=3))
        assert report.ok
        assert report.resolved == []

    def test_converts_when_event_moves_close(self, engine, auction, directory, listed_swap):
        best = bid(engine, auction, ALICE, "300")
        booking = directory.get_booking(listed_swap.source_booking_id)
        booking.check_in = START + timedelta(days=3)

        report = engine.sweeper.sweep(START + timedelta(days=1))
        assert report.count(ResolutionAction.CONVERTED) == 1
        assert report.resolved[0].winning_proposal_id == best.id

    def test_conversion_disabled(self, engine, auction, directory, listed_swap, config):
        config.convert_near_event = False
        booking = directory.get_booking(listed_swap.source_booking_id)
        booking.check_in = START + timedelta(days=3)

        report = engine.sweeper.sweep(START + timedelta(days=1))
        assert report.resolved == []
        assert engine.repository.get_auction(auction.id).is_active

    def test_booking_service_failure_reported(self, engine, auction, directory):
        directory.fail = True
        report = engine.sweeper.sweep(START + timedelta(days=1))
        assert not report.ok
        assert report.failures[0].code == "BOOKING_SERVICE_FAILED"

    def test_storage_failure_reported(self, engine, auction, monkeypatch):
        def broken(status=None):
            raise StorageError("db locked")
        monkeypatch.setattr(engine.repository, "list_auctions", broken)

        report = engine.sweeper.sweep(END)
        assert report.failures[0].code == "STORAGE_FAILED"

    def test_report_dict(self, engine, auction):
        bid(engine, auction, ALICE, "300")
        body = engine.sweeper.sweep(END).to_dict()
        assert body["failures"] == []
        assert body["resolved"][0]["action"] == "ended"


class StubSweeper:
    def __init__(self, error=None):
        self.calls = 0
        self.error = error

    def sweep(self, now=None):
        self.calls += 1
        if self.error:
            raise self.error
        return SweepReport()


class TestPeriodicSweeper:

    def test_rejects_bad_interval(self):
        with pytest.raises(ValueError):
            PeriodicSweeper(StubSweeper(), 0)

    def test_tick(self):
        stub = StubSweeper()
        ticker = PeriodicSweeper(stub, 60)
        assert ticker.tick().ok
        assert ticker.ticks == 1
        assert stub.calls == 1

    def test_tick_survives_exceptions(self):
        ticker = PeriodicSweeper(StubSweeper(RuntimeError("boom")), 60)
        report = ticker.tick()
        assert report.failures[0].code == "SWEEP_FAILED"

    def test_start_stop(self):
        ticker = PeriodicSweeper(StubSweeper(), 3600)
        ticker.start()
        assert ticker.running
        ticker.start()
        ticker.stop()
        assert not ticker.running

    def test_engine_default_interval(self, engine):
        assert engine.periodic_sweeper().interval == engine.config.sweep_interval_seconds
