"""
SwapMarketAPI - HTTP-style handlers over the engine.

Framework-agnostic: each handler takes already-authenticated user ids and
JSON-like bodies and returns an ApiResponse(status_code, body). Error
bodies have the form {"error": {"kind", "code", "message", "details"}} with
the status taken from the error kind.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from swapmatch.core.auction.lifecycle import AuctionLifecycleManager
from swapmatch.core.auction.sweeper import TimeoutSweeper
from swapmatch.core.compatibility.analysis import CompatibilityAnalysisService
from swapmatch.core.errors import Result
from swapmatch.core.swap.service import SwapService
from swapmatch.utils.logger import get_logger

logger = get_logger("api")


@dataclass
class ApiResponse:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def _respond(result: Result, render: Callable[[Any], Dict[str, Any]], status: int = 200) -> ApiResponse:
    if not result.ok:
        error = result.error
        log = logger.error if error.http_status >= 500 else logger.debug
        log(f"{error.http_status} {error.code}: {error.message}")
        return ApiResponse(error.http_status, {"error": error.to_dict()})
    return ApiResponse(status, render(result.value))


class SwapMarketAPI:
    """
    Request handlers.

    Args:
        swaps: Swap service
        auctions: Auction lifecycle manager
        analysis: Compatibility analysis service
        sweeper: Timeout sweeper
    """

    def __init__(
        self,
        swaps: SwapService,
        auctions: AuctionLifecycleManager,
        analysis: CompatibilityAnalysisService,
        sweeper: TimeoutSweeper,
    ):
        self.swaps = swaps
        self.auctions = auctions
        self.analysis = analysis
        self.sweeper = sweeper

    # =========================================================================
    # Swaps
    # =========================================================================

    def create_swap(self, user_id: Optional[str], body: Any) -> ApiResponse:
        return _respond(self.swaps.create_swap(user_id, body), lambda s: s.to_dict(), 201)

    def publish_swap(self, user_id: Optional[str], swap_id: str) -> ApiResponse:
        return _respond(self.swaps.publish_swap(swap_id, user_id), lambda s: s.to_dict())

    def get_swap(self, user_id: Optional[str], swap_id: str) -> ApiResponse:
        return _respond(self.swaps.get_swap(swap_id, user_id), lambda s: s.to_dict())

    def propose_direct(self, user_id: Optional[str], swap_id: str, body: Any) -> ApiResponse:
        return _respond(self.swaps.submit_direct_proposal(swap_id, user_id, body), lambda s: s.to_dict())

    def cancel_swap(self, user_id: Optional[str], swap_id: str) -> ApiResponse:
        return _respond(self.swaps.cancel_swap(swap_id, user_id), lambda s: s.to_dict())

    def complete_swap(self, user_id: Optional[str], swap_id: str) -> ApiResponse:
        return _respond(self.swaps.complete_swap(swap_id, user_id), lambda s: s.to_dict())

    def compatibility(
        self, user_id: Optional[str], source_swap_id: str, target_swap_id: str
    ) -> ApiResponse:
        return _respond(
            self.analysis.analyze(source_swap_id, target_swap_id, user_id),
            lambda r: r.to_dict(),
        )

    # =========================================================================
    # Auctions
    # =========================================================================

    def create_auction(self, user_id: Optional[str], swap_id: str, body: Any) -> ApiResponse:
        return _respond(self.auctions.create_auction(swap_id, user_id, body), lambda a: a.to_dict(), 201)

    def auction_availability(self, booking_id: str) -> ApiResponse:
        return _respond(self.auctions.check_auction_availability(booking_id), lambda a: a.to_dict())

    def submit_proposal(self, user_id: Optional[str], auction_id: str, body: Any) -> ApiResponse:
        return _respond(
            self.auctions.submit_proposal(auction_id, user_id, body),
            lambda p: {"proposal_id": p.id, "status": p.status.value},
            201,
        )

    def withdraw_proposal(self, user_id: Optional[str], auction_id: str, proposal_id: str) -> ApiResponse:
        return _respond(
            self.auctions.withdraw_proposal(auction_id, proposal_id, user_id),
            lambda p: {"proposal_id": p.id, "status": p.status.value},
        )

    def compare_proposals(self, auction_id: str) -> ApiResponse:
        return _respond(self.auctions.compare_proposals(auction_id), lambda c: c.to_dict())

    def end_auction(self, user_id: Optional[str], auction_id: str) -> ApiResponse:
        return _respond(
            self.auctions.end_auction(auction_id, user_id),
            lambda a: {"auction_id": a.id, "status": a.status.value},
        )

    def select_winner(self, user_id: Optional[str], auction_id: str, proposal_id: str) -> ApiResponse:
        return _respond(
            self.auctions.select_winner(auction_id, user_id, proposal_id),
            lambda a: {"auction_id": a.id, "winning_proposal_id": a.winning_proposal_id},
        )

    def sweep(self, now: Optional[datetime] = None) -> ApiResponse:
        """Trigger a sweep; 500 if any auction failed on a collaborator."""
        report = self.sweeper.sweep(now)
        body = report.to_dict()
        if not report.ok:
            logger.error(f"Sweep finished with {len(report.failures)} failures")
            return ApiResponse(500, body)
        return ApiResponse(200, body)
