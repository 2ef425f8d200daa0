"""
SwapAccessGuard - who may read or act on a swap.

- view: the owner, the proposer, or anyone while the swap is pending
  (publicly browsable)
- mutate: the owner or the proposer, whatever the status
"""

from typing import Optional

from swapmatch.core.errors import EngineError, forbidden
from swapmatch.core.swap.offer import SwapOffer, SwapStatus
from swapmatch.utils.logger import get_logger

logger = get_logger("access")


class SwapAccessGuard:
    """Authorization predicates for swaps."""

    def can_view(self, swap: SwapOffer, user_id: Optional[str]) -> bool:
        if user_id and user_id in (swap.owner_id, swap.proposer_id):
            return True
        return swap.status == SwapStatus.PENDING

    def can_mutate(self, swap: SwapOffer, user_id: Optional[str]) -> bool:
        return bool(user_id) and user_id in (swap.owner_id, swap.proposer_id)

    def authorize_compatibility(
        self, source: SwapOffer, target: SwapOffer, user_id: Optional[str]
    ) -> Optional[EngineError]:
        """
        Check that the user can view both sides of a comparison.

        Returns:
            None when allowed, else ACCESS_DENIED naming the denied side
        """
        for side, swap in (("source", source), ("target", target)):
            if not self.can_view(swap, user_id):
                logger.warning(f"Compatibility access denied: user={user_id} side={side} swap={swap.id[:8]}")
                return forbidden(
                    "ACCESS_DENIED",
                    f"Not allowed to view the {side} swap",
                    side=side,
                    swap_id=swap.id,
                )
        return None
