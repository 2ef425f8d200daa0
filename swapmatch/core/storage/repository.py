"""
Repository abstraction for swaps, auctions and proposals.

Repositories enforce these rules at the storage layer so that they hold
even when the engine's per-auction locks are bypassed (several processes
sharing one database):
- (auction_id, proposer_id, booking_id) is unique among pending booking
  proposals, and (auction_id, proposer_id, idempotency_key) is unique
- a proposal is only stored while its auction is active
- winner assignment is a compare-and-set on winning_proposal_id IS NULL
- swap status and strategy changes made outside winner assignment are
  conditional single-field updates, never whole-record writes

Insertion order comes from a storage-assigned, monotonically increasing
sequence number.
"""

import copy
import itertools
import threading
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from swapmatch.core.auction.auction import Auction, AuctionStatus, EndReason
from swapmatch.core.auction.proposal import Proposal, ProposalStatus, ProposalType
from swapmatch.core.errors import AuctionClosed, UniqueViolation
from swapmatch.core.swap.offer import OPEN_SWAP_STATUSES, AcceptanceStrategy, SwapOffer, SwapStatus
from swapmatch.utils.logger import get_logger

logger = get_logger("storage.memory")

PENDING_BOOKING_CONSTRAINT = "pending_booking_proposal"
IDEMPOTENCY_CONSTRAINT = "proposal_idempotency_key"
AUCTION_PER_SWAP_CONSTRAINT = "auction_per_swap"


class Repository(Protocol):
    """Storage operations used by the engine."""

    # Swaps
    def add_swap(self, swap: SwapOffer) -> None: ...
    def get_swap(self, swap_id: str) -> Optional[SwapOffer]: ...
    def save_swap(self, swap: SwapOffer) -> None: ...
    def update_swap_status(self, swap_id: str, status: SwapStatus, expected: SwapStatus) -> bool: ...
    def update_swap_strategy(
        self, swap_id: str, strategy: AcceptanceStrategy, expected: AcceptanceStrategy
    ) -> bool: ...
    def list_swaps(self) -> List[SwapOffer]: ...

    # Auctions
    def add_auction(self, auction: Auction, swap: SwapOffer) -> None: ...
    def get_auction(self, auction_id: str) -> Optional[Auction]: ...
    def get_auction_for_swap(self, swap_id: str) -> Optional[Auction]: ...
    def list_auctions(self, status: Optional[AuctionStatus] = None) -> List[Auction]: ...
    def end_auction_if_active(self, auction_id: str, ended_at: datetime, reason: EndReason) -> bool: ...
    def cancel_auction(self, auction_id: str, ended_at: datetime) -> bool: ...
    def set_reminder_sent(self, auction_id: str) -> None: ...

    # Proposals
    def insert_proposal(self, proposal: Proposal) -> Proposal: ...
    def get_proposal(self, proposal_id: str) -> Optional[Proposal]: ...
    def list_proposals(self, auction_id: str) -> List[Proposal]: ...
    def find_by_idempotency_key(self, auction_id: str, proposer_id: str, key: str) -> Optional[Proposal]: ...
    def update_proposal_status(
        self, proposal_id: str, status: ProposalStatus, expected: Optional[ProposalStatus] = None
    ) -> bool: ...

    # Resolution
    def commit_winner(
        self, auction_id: str, proposal_id: str, swap: SwapOffer, auto_selected: bool
    ) -> bool: ...


class InMemoryRepository:
    """
    Thread-safe dict-backed repository.

    Records are copied on the way in and on the way out, so callers can
    never mutate stored state except through repository methods.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._swaps: Dict[str, SwapOffer] = {}
        self._auctions: Dict[str, Auction] = {}
        self._proposals: Dict[str, Proposal] = {}
        self._sequence = itertools.count(1)

    # =========================================================================
    # Swaps
    # =========================================================================

    def add_swap(self, swap: SwapOffer) -> None:
        with self._lock:
            if swap.id in self._swaps:
                raise UniqueViolation("swap_id")
            self._swaps[swap.id] = copy.deepcopy(swap)

    def get_swap(self, swap_id: str) -> Optional[SwapOffer]:
        with self._lock:
            swap = self._swaps.get(swap_id)
            return copy.deepcopy(swap) if swap else None

    def save_swap(self, swap: SwapOffer) -> None:
        with self._lock:
            self._swaps[swap.id] = copy.deepcopy(swap)

    def update_swap_status(self, swap_id: str, status: SwapStatus, expected: SwapStatus) -> bool:
        """Change only the status, if it is still `expected`."""
        with self._lock:
            swap = self._swaps.get(swap_id)
            if swap is None or swap.status != expected:
                return False
            swap.status = status
            return True

    def update_swap_strategy(
        self, swap_id: str, strategy: AcceptanceStrategy, expected: AcceptanceStrategy
    ) -> bool:
        """Change only the acceptance strategy of an open swap still on `expected`."""
        with self._lock:
            swap = self._swaps.get(swap_id)
            if swap is None or swap.status not in OPEN_SWAP_STATUSES:
                return False
            if swap.acceptance_strategy != expected:
                return False
            swap.acceptance_strategy = strategy
            return True

    def list_swaps(self) -> List[SwapOffer]:
        with self._lock:
            return [copy.deepcopy(s) for s in self._swaps.values()]

    # =========================================================================
    # Auctions
    # =========================================================================

    def add_auction(self, auction: Auction, swap: SwapOffer) -> None:
        """Store a new auction and the swap it reconfigured, atomically."""
        with self._lock:
            if any(a.swap_id == auction.swap_id for a in self._auctions.values()):
                raise UniqueViolation(AUCTION_PER_SWAP_CONSTRAINT)
            self._auctions[auction.id] = copy.deepcopy(auction)
            self._swaps[swap.id] = copy.deepcopy(swap)

    def get_auction(self, auction_id: str) -> Optional[Auction]:
        with self._lock:
            auction = self._auctions.get(auction_id)
            return copy.deepcopy(auction) if auction else None

    def get_auction_for_swap(self, swap_id: str) -> Optional[Auction]:
        with self._lock:
            for auction in self._auctions.values():
                if auction.swap_id == swap_id:
                    return copy.deepcopy(auction)
            return None

    def list_auctions(self, status: Optional[AuctionStatus] = None) -> List[Auction]:
        with self._lock:
            auctions = sorted(self._auctions.values(), key=lambda a: a.created_at)
            return [
                copy.deepcopy(a) for a in auctions
                if status is None or a.status == status
            ]

    def end_auction_if_active(self, auction_id: str, ended_at: datetime, reason: EndReason) -> bool:
        """ACTIVE -> ENDED. Returns False if the auction was not active."""
        with self._lock:
            auction = self._auctions.get(auction_id)
            if auction is None or auction.status != AuctionStatus.ACTIVE:
                return False
            auction.status = AuctionStatus.ENDED
            auction.ended_at = ended_at
            auction.end_reason = reason
            return True

    def cancel_auction(self, auction_id: str, ended_at: datetime) -> bool:
        """End the auction as cancelled. Returns False once a winner exists."""
        with self._lock:
            auction = self._auctions.get(auction_id)
            if auction is None or auction.winning_proposal_id is not None:
                return False
            if auction.status == AuctionStatus.ACTIVE:
                auction.ended_at = ended_at
            auction.status = AuctionStatus.ENDED
            auction.end_reason = EndReason.CANCELLED
            return True

    def set_reminder_sent(self, auction_id: str) -> None:
        with self._lock:
            auction = self._auctions.get(auction_id)
            if auction is not None:
                auction.reminder_sent = True

    # =========================================================================
    # Proposals
    # =========================================================================

    def insert_proposal(self, proposal: Proposal) -> Proposal:
        """
        Store a proposal and assign its sequence number.

        Raises:
            AuctionClosed: the auction is missing or no longer active
            UniqueViolation: duplicate pending booking or idempotency key
        """
        with self._lock:
            auction = self._auctions.get(proposal.auction_id)
            if auction is None or auction.status != AuctionStatus.ACTIVE:
                raise AuctionClosed(proposal.auction_id)
            for existing in self._proposals.values():
                if existing.auction_id != proposal.auction_id:
                    continue
                if existing.proposer_id != proposal.proposer_id:
                    continue
                if (
                    proposal.idempotency_key is not None
                    and existing.idempotency_key == proposal.idempotency_key
                ):
                    raise UniqueViolation(IDEMPOTENCY_CONSTRAINT)
                if (
                    proposal.proposal_type == ProposalType.BOOKING
                    and existing.proposal_type == ProposalType.BOOKING
                    and existing.is_pending
                    and existing.booking_id == proposal.booking_id
                ):
                    raise UniqueViolation(PENDING_BOOKING_CONSTRAINT)

            stored = copy.deepcopy(proposal)
            stored.sequence = next(self._sequence)
            self._proposals[stored.id] = stored
            logger.debug(f"Stored {stored!r}")
            return copy.deepcopy(stored)

    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        with self._lock:
            proposal = self._proposals.get(proposal_id)
            return copy.deepcopy(proposal) if proposal else None

    def list_proposals(self, auction_id: str) -> List[Proposal]:
        with self._lock:
            proposals = [p for p in self._proposals.values() if p.auction_id == auction_id]
            proposals.sort(key=lambda p: p.sequence)
            return [copy.deepcopy(p) for p in proposals]

    def find_by_idempotency_key(self, auction_id: str, proposer_id: str, key: str) -> Optional[Proposal]:
        with self._lock:
            for proposal in self._proposals.values():
                if (
                    proposal.auction_id == auction_id
                    and proposal.proposer_id == proposer_id
                    and proposal.idempotency_key == key
                ):
                    return copy.deepcopy(proposal)
            return None

    def update_proposal_status(
        self, proposal_id: str, status: ProposalStatus, expected: Optional[ProposalStatus] = None
    ) -> bool:
        with self._lock:
            proposal = self._proposals.get(proposal_id)
            if proposal is None:
                return False
            if expected is not None and proposal.status != expected:
                return False
            proposal.status = status
            return True

    # =========================================================================
    # Resolution
    # =========================================================================

    def commit_winner(
        self, auction_id: str, proposal_id: str, swap: SwapOffer, auto_selected: bool
    ) -> bool:
        """
        Assign the winner in one step.

        Succeeds only if the auction is ended, not cancelled, has no winner,
        and the proposal is still pending. On success the winner becomes
        accepted, every other pending proposal rejected, and the swap is
        saved.
        """
        with self._lock:
            auction = self._auctions.get(auction_id)
            proposal = self._proposals.get(proposal_id)
            if auction is None or proposal is None or proposal.auction_id != auction_id:
                return False
            if auction.winning_proposal_id is not None:
                return False
            if auction.status != AuctionStatus.ENDED or auction.end_reason == EndReason.CANCELLED:
                return False
            if not proposal.is_pending:
                return False

            auction.winning_proposal_id = proposal_id
            auction.auto_selected = auto_selected
            for other in self._proposals.values():
                if other.auction_id != auction_id or not other.is_pending:
                    continue
                other.status = (
                    ProposalStatus.ACCEPTED if other.id == proposal_id else ProposalStatus.REJECTED
                )
            self._swaps[swap.id] = copy.deepcopy(swap)
            return True
