"""
ProposalLedger - the ordered proposal set of one auction.

Append-only apart from status changes. Duplicate booking proposals are
rejected here first and again by the repository's unique index, which is
what decides the race when two identical submissions arrive at once.
"""

from typing import List, Optional

from swapmatch.core.auction.auction import AuctionSettings
from swapmatch.core.auction.proposal import Proposal, ProposalStatus, ProposalType
from swapmatch.core.errors import (
    AuctionClosed, EngineError, Result, StorageError, UniqueViolation, conflict, integration_error
)
from swapmatch.core.storage.repository import IDEMPOTENCY_CONSTRAINT, Repository
from swapmatch.utils.logger import get_logger

logger = get_logger("ledger")


def rank_key(proposal: Proposal, settings: AuctionSettings) -> tuple:
    """
    Sort key: (type priority, cash amount desc, insertion order asc).

    Cash ranks ahead of booking exchange when the auction accepts cash.
    """
    if settings.allow_cash_proposals:
        priority = 0 if proposal.proposal_type == ProposalType.CASH else 1
    else:
        priority = 0 if proposal.proposal_type == ProposalType.BOOKING else 1
    amount = proposal.cash_amount
    return (priority, -amount if amount is not None else 0, proposal.sequence)


class ProposalLedger:
    """
    Proposal collection for a single auction, backed by a repository.

    Args:
        auction_id: Auction this ledger covers
        repository: Storage holding the proposals
    """

    def __init__(self, auction_id: str, repository: Repository):
        self.auction_id = auction_id
        self.repository = repository

    # =========================================================================
    # Queries
    # =========================================================================

    def proposals(self) -> List[Proposal]:
        """All proposals in insertion order."""
        return self.repository.list_proposals(self.auction_id)

    def pending(self) -> List[Proposal]:
        return [p for p in self.proposals() if p.is_pending]

    def find(self, proposal_id: str) -> Optional[Proposal]:
        proposal = self.repository.get_proposal(proposal_id)
        if proposal is None or proposal.auction_id != self.auction_id:
            return None
        return proposal

    def find_retry(self, proposer_id: str, idempotency_key: Optional[str]) -> Optional[Proposal]:
        """Proposal previously stored under this caller key, if any."""
        if not idempotency_key:
            return None
        return self.repository.find_by_idempotency_key(
            self.auction_id, proposer_id, idempotency_key
        )

    def find_duplicate(self, proposal: Proposal) -> Optional[Proposal]:
        """Pending booking proposal from the same proposer for the same booking."""
        if proposal.proposal_type != ProposalType.BOOKING:
            return None
        for existing in self.pending():
            if (
                existing.proposal_type == ProposalType.BOOKING
                and existing.proposer_id == proposal.proposer_id
                and existing.booking_id == proposal.booking_id
            ):
                return existing
        return None

    def rank(self, settings: AuctionSettings, pending_only: bool = True) -> List[Proposal]:
        """Proposals ordered best-first."""
        proposals = self.pending() if pending_only else self.proposals()
        return sorted(proposals, key=lambda p: rank_key(p, settings))

    # =========================================================================
    # Mutations
    # =========================================================================

    def append(self, proposal: Proposal) -> Result:
        """
        Store a new proposal.

        Returns:
            Result with the stored proposal (sequence assigned). A retry
            carrying an already-used idempotency key returns the proposal
            stored by the first attempt. DUPLICATE_PROPOSAL on a pending
            booking duplicate. AUCTION_NOT_ACTIVE if the auction stopped
            accepting proposals before the insert.
        """
        retried = self.find_retry(proposal.proposer_id, proposal.idempotency_key)
        if retried is not None:
            logger.debug(f"Idempotent retry returned {retried!r}")
            return Result.success(retried)

        existing = self.find_duplicate(proposal)
        if existing is not None:
            return Result.failure(self._duplicate(existing))

        try:
            stored = self.repository.insert_proposal(proposal)
        except UniqueViolation as e:
            if e.constraint == IDEMPOTENCY_CONSTRAINT:
                retried = self.find_retry(proposal.proposer_id, proposal.idempotency_key)
                if retried is not None:
                    return Result.success(retried)
            existing = self.find_duplicate(proposal)
            logger.debug(f"Insert lost race on {e.constraint} for auction {self.auction_id[:8]}")
            return Result.failure(self._duplicate(existing))
        except AuctionClosed:
            logger.info(f"Auction {self.auction_id[:8]} closed before proposal was stored")
            return Result.failure(
                conflict("AUCTION_NOT_ACTIVE", "Auction is not accepting proposals", auction_id=self.auction_id)
            )
        except StorageError as e:
            logger.error(f"Storing proposal for auction {self.auction_id[:8]} failed: {e}")
            return Result.failure(
                integration_error("STORAGE_FAILED", "Could not store proposal", auction_id=self.auction_id)
            )

        logger.info(f"Proposal appended: {stored!r} auction={self.auction_id[:8]}")
        return Result.success(stored)

    def mark(
        self,
        proposal_id: str,
        status: ProposalStatus,
        expected: Optional[ProposalStatus] = ProposalStatus.PENDING,
    ) -> bool:
        """Conditionally change a proposal's status."""
        return self.repository.update_proposal_status(proposal_id, status, expected)

    def _duplicate(self, existing: Optional[Proposal]) -> EngineError:
        details = {"auction_id": self.auction_id}
        if existing is not None:
            details["existing_proposal_id"] = existing.id
        return conflict(
            "DUPLICATE_PROPOSAL",
            "A pending proposal for this booking already exists",
            **details,
        )

    def __len__(self) -> int:
        return len(self.proposals())
