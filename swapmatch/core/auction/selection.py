"""
Winner selection for timeout-driven resolution.

Automatic selection prefers money when the auction accepts it:
- highest cash amount wins; equal amounts go to the earliest submission
- with no eligible cash offer, the earliest booking proposal wins
- with no pending proposals, there is no winner

Manual selection by the owner bypasses this policy entirely.
"""

from typing import List, Optional

from swapmatch.core.auction.auction import AuctionSettings
from swapmatch.core.auction.proposal import Proposal, ProposalType
from swapmatch.utils.logger import get_logger

logger = get_logger("selection")


def cash_key(proposal: Proposal) -> tuple:
    """Higher amount first, then earlier submission."""
    return (proposal.cash_amount, -proposal.sequence)


class WinnerSelectionPolicy:
    """Automatic, tie-broken winner choice."""

    def select_automatic(
        self, proposals: List[Proposal], settings: AuctionSettings
    ) -> Optional[Proposal]:
        """
        Pick the winner among pending proposals.

        Args:
            proposals: Candidate proposals (non-pending ones are ignored)
            settings: Auction settings deciding cash eligibility

        Returns:
            Winning proposal, or None if there are no candidates
        """
        candidates = [p for p in proposals if p.is_pending]
        if not candidates:
            logger.debug("No proposals to select winner from")
            return None

        if settings.allow_cash_proposals:
            cash = [p for p in candidates if p.proposal_type == ProposalType.CASH]
            if cash:
                winner = max(cash, key=cash_key)
                logger.debug(f"Selected cash winner {winner!r} amount={winner.cash_amount}")
                return winner

        bookings = [p for p in candidates if p.proposal_type == ProposalType.BOOKING]
        if not bookings:
            return None
        winner = min(bookings, key=lambda p: p.sequence)
        logger.debug(f"Selected booking winner {winner!r}")
        return winner
