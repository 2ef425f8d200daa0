"""
Compatibility analysis - the read-only capability behind "how well do these
two swaps match?".

Resolves both swaps, checks the requester may view each side, looks up the
source bookings and scores them. Runs without any lock.
"""

from typing import Optional

from swapmatch.core.collaborators import BookingLookup
from swapmatch.core.compatibility.access import SwapAccessGuard
from swapmatch.core.compatibility.scorer import (
    FACTORS, CompatibilityResult, CompatibilityScorer, InvalidInput, weighted_score
)
from swapmatch.core.errors import (
    Result, StorageError, fail, integration_error, not_authenticated, not_found, validation_error
)
from swapmatch.core.storage.repository import Repository
from swapmatch.utils.logger import get_logger
from swapmatch.utils.validation import validate_identifier

logger = get_logger("analysis")


def is_well_formed(result: CompatibilityResult) -> bool:
    """Structural check on a scorer's output."""
    if set(result.factors) != set(FACTORS):
        return False
    if any(not 0 <= f.score <= 100 for f in result.factors.values()):
        return False
    if abs(sum(f.weight for f in result.factors.values()) - 1.0) > 1e-9:
        return False
    scores = {name: f.score for name, f in result.factors.items()}
    return result.overall_score == weighted_score(scores)


class CompatibilityAnalysisService:
    """
    Two-sided compatibility analysis.

    Args:
        repository: Swap storage
        bookings: Booking lookup for the swaps' source bookings
        scorer: Compatibility scorer
        guard: Access guard
    """

    def __init__(
        self,
        repository: Repository,
        bookings: BookingLookup,
        scorer: Optional[CompatibilityScorer] = None,
        guard: Optional[SwapAccessGuard] = None,
    ):
        self.repository = repository
        self.bookings = bookings
        self.scorer = scorer or CompatibilityScorer()
        self.guard = guard or SwapAccessGuard()

    def analyze(
        self, source_swap_id: str, target_swap_id: str, requester_id: Optional[str]
    ) -> Result:
        """
        Score the source swap against the target swap.

        Returns:
            Result with CompatibilityResult
        """
        if not requester_id:
            return fail(not_authenticated())

        for name, value in (("source_swap_id", source_swap_id), ("target_swap_id", target_swap_id)):
            valid, error = validate_identifier(value, name)
            if not valid:
                return fail(validation_error("INVALID_INPUT", error, field=name))
        if source_swap_id == target_swap_id:
            return fail(validation_error("INVALID_INPUT", "Cannot compare a swap with itself"))

        try:
            swaps = {}
            for side, swap_id in (("source", source_swap_id), ("target", target_swap_id)):
                swap = self.repository.get_swap(swap_id)
                if swap is None:
                    return fail(not_found("SWAP_NOT_FOUND", f"The {side} swap was not found",
                                          side=side, swap_id=swap_id))
                swaps[side] = swap
        except StorageError as e:
            logger.error(f"Storage failure during compatibility analysis: {e}")
            return fail(integration_error("STORAGE_FAILED", "Storage unavailable"))

        denied = self.guard.authorize_compatibility(swaps["source"], swaps["target"], requester_id)
        if denied is not None:
            return fail(denied)

        bookings = {}
        for side, swap in swaps.items():
            try:
                booking = self.bookings.get_booking(swap.source_booking_id)
            except Exception as e:
                logger.error(f"Booking lookup failed for {side} swap {swap.id[:8]}: {e}")
                return fail(integration_error(
                    "BOOKING_SERVICE_FAILED", "Booking service unavailable", side=side
                ))
            if booking is None:
                return fail(integration_error(
                    "MALFORMED_BOOKING_DATA", f"The {side} swap's booking is missing", side=side
                ))
            bookings[side] = booking

        try:
            result = self.scorer.score(bookings["source"], bookings["target"])
        except InvalidInput as e:
            logger.warning(f"Compatibility input rejected: {e}")
            return fail(integration_error("MALFORMED_BOOKING_DATA", str(e), side=e.side))

        if not is_well_formed(result):
            logger.error(f"Scorer returned a malformed result for {source_swap_id[:8]}/{target_swap_id[:8]}")
            return fail(integration_error("SCORING_FAILED", "Compatibility scoring returned a malformed result"))

        logger.info(
            f"Compatibility {source_swap_id[:8]} -> {target_swap_id[:8]}: "
            f"{result.overall_score} ({result.tier.value})"
        )
        return Result.success(result)
