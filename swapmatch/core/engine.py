"""
SwapMatchEngine - wires the engine's components together.

One lock registry, one clock and one set of collaborators are shared by
every service, so swap-level and auction-level operations serialize on the
same locks.
"""

from dataclasses import dataclass
from typing import Optional

from swapmatch.api.handlers import SwapMarketAPI
from swapmatch.core.auction.lifecycle import AuctionLifecycleManager
from swapmatch.core.auction.sweeper import PeriodicSweeper, TimeoutSweeper
from swapmatch.core.collaborators import (
    BookingLookup, EscrowService, InMemoryBookingDirectory, LoggingNotifier,
    NotificationDispatcher, RecordingEscrow,
)
from swapmatch.core.compatibility.access import SwapAccessGuard
from swapmatch.core.compatibility.analysis import CompatibilityAnalysisService
from swapmatch.core.config import EngineConfig
from swapmatch.core.coordination import AuctionLockRegistry, Clock, utc_now
from swapmatch.core.storage.repository import InMemoryRepository, Repository
from swapmatch.core.swap.service import SwapService


@dataclass
class SwapMatchEngine:
    """All engine services over one repository."""
    config: EngineConfig
    repository: Repository
    bookings: BookingLookup
    escrow: EscrowService
    notifier: NotificationDispatcher
    auctions: AuctionLifecycleManager
    swaps: SwapService
    analysis: CompatibilityAnalysisService
    sweeper: TimeoutSweeper
    api: SwapMarketAPI

    def periodic_sweeper(self, interval: Optional[float] = None) -> PeriodicSweeper:
        return PeriodicSweeper(self.sweeper, interval or self.config.sweep_interval_seconds)


def build_engine(
    repository: Optional[Repository] = None,
    bookings: Optional[BookingLookup] = None,
    escrow: Optional[EscrowService] = None,
    notifier: Optional[NotificationDispatcher] = None,
    config: Optional[EngineConfig] = None,
    clock: Clock = utc_now,
) -> SwapMatchEngine:
    """
    Build an engine. Missing collaborators get in-memory implementations.
    """
    config = config or EngineConfig()
    repository = repository if repository is not None else InMemoryRepository()
    bookings = bookings if bookings is not None else InMemoryBookingDirectory()
    escrow = escrow if escrow is not None else RecordingEscrow()
    notifier = notifier if notifier is not None else LoggingNotifier()
    guard = SwapAccessGuard()

    auctions = AuctionLifecycleManager(
        repository, bookings, escrow, notifier,
        locks=AuctionLockRegistry(), config=config, clock=clock,
    )
    swaps = SwapService(auctions, guard)
    analysis = CompatibilityAnalysisService(repository, bookings, guard=guard)
    sweeper = TimeoutSweeper(auctions, repository, config)

    return SwapMatchEngine(
        config=config,
        repository=repository,
        bookings=bookings,
        escrow=escrow,
        notifier=notifier,
        auctions=auctions,
        swaps=swaps,
        analysis=analysis,
        sweeper=sweeper,
        api=SwapMarketAPI(swaps, auctions, analysis, sweeper),
    )
