"""
TimeoutSweeper - background resolution of auctions.

A sweep:
- ends ACTIVE auctions whose end_date has passed
- converts ACTIVE auctions whose event is closer than the lead time
- revisits ENDED auctions still awaiting a winner (deferred auto-selection,
  selection reminders, downgrades)

Each step goes through AuctionLifecycleManager, so a sweep can run early,
late, twice, or concurrently with owner actions without changing the outcome.
PeriodicSweeper drives sweeps on a timer; the scheduling is kept out of the
sweep logic.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from swapmatch.core.auction.auction import AuctionStatus
from swapmatch.core.auction.lifecycle import AuctionLifecycleManager, Resolution, ResolutionAction
from swapmatch.core.config import EngineConfig
from swapmatch.core.coordination import as_utc
from swapmatch.core.errors import EngineError, ErrorKind, StorageError, integration_error
from swapmatch.core.storage.repository import Repository
from swapmatch.utils.logger import get_logger

logger = get_logger("sweeper")


@dataclass
class SweepReport:
    """Outcome of one sweep."""
    resolved: List[Resolution] = field(default_factory=list)
    failures: List[EngineError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def count(self, action: ResolutionAction) -> int:
        return sum(1 for r in self.resolved if r.action == action)

    def to_dict(self) -> dict:
        return {
            "resolved": [r.to_dict() for r in self.resolved],
            "failures": [f.to_dict() for f in self.failures],
        }


class TimeoutSweeper:
    """
    Finds auctions that need resolution and resolves them.

    Args:
        manager: Lifecycle manager performing each transition
        repository: Storage to enumerate auctions from
        config: Engine configuration (lead time, conversion switch)
    """

    def __init__(
        self,
        manager: AuctionLifecycleManager,
        repository: Repository,
        config: Optional[EngineConfig] = None,
    ):
        self.manager = manager
        self.repository = repository
        self.config = config or manager.config

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Run one sweep.

        Args:
            now: Sweep time (defaults to the manager's clock)

        Returns:
            SweepReport listing every auction that changed state
        """
        now = as_utc(now) if now else self.manager.clock()
        report = SweepReport()

        try:
            active = self.repository.list_auctions(AuctionStatus.ACTIVE)
            ended = [
                a for a in self.repository.list_auctions(AuctionStatus.ENDED)
                if not a.has_winner and not a.is_cancelled
            ]
        except StorageError as e:
            logger.error(f"Sweep could not list auctions: {e}")
            report.failures.append(integration_error("STORAGE_FAILED", "Storage unavailable"))
            return report

        for auction in active:
            if auction.is_expired(now):
                self._record(report, self.manager.handle_timeout(auction.id, now))
            elif self.config.convert_near_event:
                self._maybe_convert(report, auction, now)

        for auction in ended:
            self._record(report, self.manager.handle_timeout(auction.id, now))

        if report.resolved or report.failures:
            logger.info(
                f"Sweep: {len(report.resolved)} resolved, "
                f"{report.count(ResolutionAction.AUTO_SELECTED)} auto-selected, "
                f"{report.count(ResolutionAction.DOWNGRADED)} downgraded, "
                f"{len(report.failures)} failures"
            )
        return report

    def _maybe_convert(self, report: SweepReport, auction, now: datetime) -> None:
        event = self.manager.event_date_for(auction)
        if not event.ok:
            if event.code in ("BOOKING_NOT_FOUND", "SWAP_NOT_FOUND"):
                logger.warning(f"Auction {auction.id[:8]}: {event.error.message}; skipped")
            else:
                report.failures.append(event.error)
            return
        if event.value - now >= self.manager.min_lead:
            return
        self._record(
            report,
            self.manager.convert_to_first_match(auction.id, "event is too close", now),
        )

    @staticmethod
    def _record(report: SweepReport, result) -> None:
        if not result.ok:
            # Lost a race with an owner action; the owner's outcome stands
            if result.error.kind == ErrorKind.CONFLICT:
                logger.debug(f"Sweep skipped: {result.error.code}")
                return
            report.failures.append(result.error)
            return
        if result.value.action != ResolutionAction.NOOP:
            report.resolved.append(result.value)


class PeriodicSweeper:
    """
    Runs a sweeper every `interval` seconds on a daemon timer thread.

    Args:
        sweeper: Sweeper to drive
        interval: Seconds between sweeps
    """

    def __init__(self, sweeper: TimeoutSweeper, interval: float):
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        self.sweeper = sweeper
        self.interval = interval
        self.ticks = 0
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._schedule()
        logger.info(f"Periodic sweeper started (every {self.interval}s)")

    def stop(self) -> None:
        with self._lock:
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        logger.info("Periodic sweeper stopped")

    def tick(self) -> SweepReport:
        """Run one sweep now."""
        self.ticks += 1
        try:
            return self.sweeper.sweep()
        except Exception as e:
            logger.error(f"Sweep tick {self.ticks} failed: {e}")
            report = SweepReport()
            report.failures.append(integration_error("SWEEP_FAILED", str(e)))
            return report

    def _schedule(self) -> None:
        self._timer = threading.Timer(self.interval, self._run)
        self._timer.daemon = True
        self._timer.start()

    def _run(self) -> None:
        self.tick()
        with self._lock:
            if self._running:
                self._schedule()
