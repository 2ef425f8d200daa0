"""
SwapService - swap offers outside the auction itself.

Covers listing, publishing, direct first-match acceptance, cancellation
(unwinding any auction) and completion. Swap-level mutations hold the
swap's lock; auction operations take the same lock before the auction's,
so cancellation can enter the lifecycle manager without reordering.
Status changes are conditional on the status that was read.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from swapmatch.core.auction.lifecycle import AuctionLifecycleManager, check_proposed_booking
from swapmatch.core.auction.proposal import BookingOffer, CashOffer
from swapmatch.core.collaborators import dispatch
from swapmatch.core.compatibility.access import SwapAccessGuard
from swapmatch.core.coordination import as_utc
from swapmatch.core.errors import (
    Result, StorageError, conflict, fail, forbidden, integration_error,
    not_authenticated, not_found, validation_error,
)
from swapmatch.core.schemas import parse_proposal_body, parse_swap_body
from swapmatch.core.swap.offer import AcceptanceStrategy, SwapOffer, SwapStatus
from swapmatch.utils.logger import get_logger

logger = get_logger("swap")


class SwapService:
    """
    Swap offer operations.

    Args:
        lifecycle: Auction lifecycle manager; its repository, collaborators,
            lock registry and clock are shared
        guard: Access guard
    """

    def __init__(self, lifecycle: AuctionLifecycleManager, guard: Optional[SwapAccessGuard] = None):
        self.lifecycle = lifecycle
        self.repository = lifecycle.repository
        self.bookings = lifecycle.bookings
        self.escrow = lifecycle.escrow
        self.notifier = lifecycle.notifier
        self.locks = lifecycle.locks
        self.guard = guard or SwapAccessGuard()

    def _load(self, swap_id: str) -> Result:
        swap = self.repository.get_swap(swap_id)
        if swap is None:
            return fail(not_found("SWAP_NOT_FOUND", "Swap not found", swap_id=swap_id))
        return Result.success(swap)

    def _storage_failure(self, e: StorageError, swap_id: str) -> Result:
        logger.error(f"Storage failure for swap {swap_id}: {e}")
        return fail(integration_error("STORAGE_FAILED", "Storage unavailable", swap_id=swap_id))

    @staticmethod
    def _not_available(swap: SwapOffer) -> Result:
        return fail(conflict(
            "SWAP_NOT_AVAILABLE", f"Swap is {swap.status.value}",
            swap_id=swap.id, status=swap.status.value,
            acceptance_strategy=swap.acceptance_strategy.value,
        ))

    # =========================================================================
    # Listing
    # =========================================================================

    def create_swap(self, owner_id: Optional[str], body: Any) -> Result:
        """
        List one of the owner's bookings for exchange.

        Returns:
            Result with the new SwapOffer (status available, first_match)
        """
        if not owner_id:
            return fail(not_authenticated())
        parsed = parse_swap_body(body)
        if not parsed.ok:
            return parsed
        body = parsed.value

        error = check_proposed_booking(self.bookings, owner_id, body.source_booking_id)
        if error is not None:
            return fail(error)

        swap = SwapOffer(
            source_booking_id=body.source_booking_id,
            owner_id=owner_id,
            preferences=body.to_preferences(),
            created_at=self.lifecycle.clock(),
        )
        try:
            self.repository.add_swap(swap)
        except StorageError as e:
            return self._storage_failure(e, swap.id)
        logger.info(f"Swap created: {swap!r} booking={body.source_booking_id[:8]}")
        return Result.success(swap)

    def publish_swap(self, swap_id: str, actor_id: Optional[str]) -> Result:
        """Make an available swap publicly browsable (available -> pending)."""
        if not actor_id:
            return fail(not_authenticated())
        try:
            with self.locks.hold(swap_id):
                loaded = self._load(swap_id)
                if not loaded.ok:
                    return loaded
                swap = loaded.value
                if swap.owner_id != actor_id:
                    return fail(forbidden("NOT_OWNER", "Only the swap owner can publish it"))
                if swap.status == SwapStatus.PENDING:
                    return Result.success(swap)
                if swap.status != SwapStatus.AVAILABLE:
                    return self._not_available(swap)
                if not self.repository.update_swap_status(swap_id, SwapStatus.PENDING, SwapStatus.AVAILABLE):
                    swap = self.repository.get_swap(swap_id)
                    if swap.status != SwapStatus.PENDING:
                        return self._not_available(swap)
                    return Result.success(swap)
                swap = self.repository.get_swap(swap_id)
        except StorageError as e:
            return self._storage_failure(e, swap_id)
        logger.info(f"Swap published: {swap!r}")
        return Result.success(swap)

    def get_swap(self, swap_id: str, user_id: Optional[str]) -> Result:
        if not user_id:
            return fail(not_authenticated())
        try:
            loaded = self._load(swap_id)
        except StorageError as e:
            return self._storage_failure(e, swap_id)
        if not loaded.ok:
            return loaded
        if not self.guard.can_view(loaded.value, user_id):
            return fail(forbidden("ACCESS_DENIED", "Not allowed to view this swap", swap_id=swap_id))
        return loaded

    # =========================================================================
    # First-match acceptance
    # =========================================================================

    def submit_direct_proposal(self, swap_id: str, proposer_id: Optional[str], body: Any) -> Result:
        """
        Accept a proposal immediately on a first_match swap.

        The offer is checked against the owner's payment preferences. No
        escrow is held: the swap resolves at once.

        Returns:
            Result with the accepted SwapOffer
        """
        if not proposer_id:
            return fail(not_authenticated())
        parsed = parse_proposal_body(body)
        if not parsed.ok:
            return parsed
        offer = parsed.value.to_offer()

        try:
            with self.locks.hold(swap_id):
                loaded = self._load(swap_id)
                if not loaded.ok:
                    return loaded
                swap = loaded.value
                if not swap.is_open or swap.acceptance_strategy != AcceptanceStrategy.FIRST_MATCH:
                    return self._not_available(swap)
                if proposer_id == swap.owner_id:
                    return fail(validation_error("SELF_PROPOSAL", "Owners cannot propose on their own swap"))

                prefs = swap.preferences
                if isinstance(offer, BookingOffer):
                    if not prefs.booking_exchange:
                        return fail(validation_error(
                            "PROPOSAL_TYPE_NOT_ALLOWED", "This swap does not accept booking exchanges"
                        ))
                    error = check_proposed_booking(self.bookings, proposer_id, offer.booking_id)
                    if error is not None:
                        return fail(error)
                    swap.accept(str(uuid.uuid4()), proposer_id, booking_id=offer.booking_id)
                elif isinstance(offer, CashOffer):
                    if not prefs.cash_accepted:
                        return fail(validation_error(
                            "PROPOSAL_TYPE_NOT_ALLOWED", "This swap does not accept cash"
                        ))
                    minimum = prefs.minimum_cash_amount
                    if minimum is not None and offer.amount < minimum:
                        return fail(validation_error(
                            "CASH_OFFER_BELOW_MINIMUM",
                            f"Cash offer {offer.amount} is below the minimum {minimum}",
                            minimum=str(minimum), amount=str(offer.amount),
                        ))
                    swap.accept(
                        str(uuid.uuid4()), proposer_id,
                        cash_amount=offer.amount, currency=offer.currency,
                    )
                self.repository.save_swap(swap)
        except StorageError as e:
            return self._storage_failure(e, swap_id)

        logger.info(f"Swap accepted directly: {swap!r} counterpart={proposer_id}")
        dispatch(self.notifier, "swap_accepted", swap.owner_id,
                 {"swap_id": swap.id, "proposer_id": proposer_id})
        return Result.success(swap)

    # =========================================================================
    # Cancellation and completion
    # =========================================================================

    def cancel_swap(
        self, swap_id: str, actor_id: Optional[str], now: Optional[datetime] = None
    ) -> Result:
        """
        Cancel a swap that is not yet resolved.

        Any auction is ended without a winner, its pending proposals are
        rejected and escrowed cash refunded.

        Returns:
            Result with the cancelled SwapOffer
        """
        now = as_utc(now) if now else self.lifecycle.clock()
        if not actor_id:
            return fail(not_authenticated())
        try:
            with self.locks.hold(swap_id):
                loaded = self._load(swap_id)
                if not loaded.ok:
                    return loaded
                swap = loaded.value
                if not self.guard.can_mutate(swap, actor_id):
                    return fail(forbidden("ACCESS_DENIED", "Not allowed to cancel this swap", swap_id=swap_id))
                if swap.is_terminal:
                    return self._not_available(swap)

                unwound = self.lifecycle.cancel_for_swap(swap_id, now)
                if not unwound.ok:
                    return unwound

                swap = self.repository.get_swap(swap_id)
                if swap.is_terminal or not self.repository.update_swap_status(
                    swap_id, SwapStatus.CANCELLED, swap.status
                ):
                    return self._not_available(self.repository.get_swap(swap_id))
                swap = self.repository.get_swap(swap_id)
        except StorageError as e:
            return self._storage_failure(e, swap_id)

        logger.info(f"Swap cancelled: {swap!r}")
        return Result.success(swap)

    def complete_swap(self, swap_id: str, actor_id: Optional[str]) -> Result:
        """
        Mark an accepted swap as completed and release any escrowed payment.

        If the release fails nothing changes and the call can be retried.
        """
        if not actor_id:
            return fail(not_authenticated())
        try:
            with self.locks.hold(swap_id):
                loaded = self._load(swap_id)
                if not loaded.ok:
                    return loaded
                swap = loaded.value
                if not self.guard.can_mutate(swap, actor_id):
                    return fail(forbidden("ACCESS_DENIED", "Not allowed to complete this swap", swap_id=swap_id))
                if swap.status == SwapStatus.COMPLETED:
                    return Result.success(swap)
                if swap.status != SwapStatus.ACCEPTED:
                    return fail(conflict(
                        "INVALID_SWAP_STATE", f"Swap is {swap.status.value}, not accepted",
                        swap_id=swap_id, status=swap.status.value,
                    ))

                winner = (
                    self.repository.get_proposal(swap.accepted_proposal_id)
                    if swap.accepted_proposal_id else None
                )
                if winner is not None and winner.holds_escrow:
                    try:
                        self.escrow.release_escrow(winner.id)
                    except Exception as e:
                        logger.error(f"Escrow release failed for proposal {winner.id}: {e}")
                        return fail(integration_error(
                            "ESCROW_FAILED", "Could not release escrow", proposal_id=winner.id
                        ))

                if not self.repository.update_swap_status(swap_id, SwapStatus.COMPLETED, SwapStatus.ACCEPTED):
                    swap = self.repository.get_swap(swap_id)
                    return fail(conflict(
                        "INVALID_SWAP_STATE", f"Swap is {swap.status.value}, not accepted",
                        swap_id=swap_id, status=swap.status.value,
                    ))
                swap = self.repository.get_swap(swap_id)
        except StorageError as e:
            return self._storage_failure(e, swap_id)

        logger.info(f"Swap completed: {swap!r}")
        return Result.success(swap)
