"""
AuctionLifecycleManager - the auction state machine.

Manages an auction from creation through resolution:
- Creation with settings and event-date checks
- Proposal submission, withdrawal and comparison
- Ending (owner, timeout, conversion, cancellation of the owning swap)
- Winner selection, manual or automatic, committed at most once

Every mutation of an auction runs under its swap's lock and then the
auction's lock from the injected AuctionLockRegistry, the same order the
swap service uses. The repository's unique indexes and conditional updates
back the locks up across processes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from swapmatch.core.auction.auction import Auction, AuctionSettings, AuctionStatus, EndReason
from swapmatch.core.auction.ledger import ProposalLedger
from swapmatch.core.auction.proposal import (
    BookingOffer, CashOffer, Proposal, ProposalStatus, ProposalType
)
from swapmatch.core.auction.selection import WinnerSelectionPolicy
from swapmatch.core.collaborators import (
    BookingLookup, EscrowService, NotificationDispatcher, dispatch
)
from swapmatch.core.config import EngineConfig
from swapmatch.core.coordination import AuctionLockRegistry, Clock, as_utc, utc_now
from swapmatch.core.errors import (
    EngineError, Result, StorageError, UniqueViolation, conflict, fail, forbidden,
    integration_error, not_authenticated, not_found, validation_error,
)
from swapmatch.core.schemas import parse_auction_settings, parse_proposal_body
from swapmatch.core.storage.repository import Repository
from swapmatch.core.swap.offer import AcceptanceStrategy
from swapmatch.utils.logger import get_logger
from swapmatch.utils.validation import validate_auction_settings, validate_auction_timing

logger = get_logger("auction")


# =============================================================================
# Result records
# =============================================================================


class ResolutionAction(str, Enum):
    """What a resolution pass did to one auction."""
    NOOP = "noop"                    # Nothing due yet, or already resolved
    ENDED = "ended"                  # ACTIVE -> ENDED, awaiting selection
    AUTO_SELECTED = "auto_selected"  # Winner chosen by the automatic policy
    DOWNGRADED = "downgraded"        # No proposals; swap fell back to first_match
    REMINDED = "reminded"            # Owner asked to pick a winner
    CONVERTED = "converted"          # Ended early because the event is close


@dataclass
class Resolution:
    auction_id: str
    action: ResolutionAction
    winning_proposal_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "auction_id": self.auction_id,
            "action": self.action.value,
            "winning_proposal_id": self.winning_proposal_id,
        }


@dataclass
class AuctionAvailability:
    """Whether a booking's event is far enough away to be auctioned."""
    booking_id: str
    can_create: bool
    reason: str = ""
    event_date: Optional[datetime] = None
    latest_end_date: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "booking_id": self.booking_id,
            "can_create": self.can_create,
            "reason": self.reason,
            "event_date": self.event_date.isoformat() if self.event_date else None,
            "latest_end_date": self.latest_end_date.isoformat() if self.latest_end_date else None,
        }


@dataclass
class ProposalComparison:
    """Read-only view of an auction's pending proposals."""
    auction_id: str
    booking_proposals: List[Proposal] = field(default_factory=list)
    cash_proposals: List[Proposal] = field(default_factory=list)
    highest_cash: Optional[Proposal] = None
    recommended: Optional[Proposal] = None

    def to_dict(self) -> dict:
        return {
            "auction_id": self.auction_id,
            "booking_proposals": [p.to_dict() for p in self.booking_proposals],
            "cash_proposals": [p.to_dict() for p in self.cash_proposals],
            "highest_cash_proposal_id": self.highest_cash.id if self.highest_cash else None,
            "recommended_proposal_id": self.recommended.id if self.recommended else None,
        }


def check_proposed_booking(
    bookings: BookingLookup, proposer_id: str, booking_id: str
) -> Optional[EngineError]:
    """
    Check that a booking offered in exchange exists, belongs to the
    proposer and is available. Returns None when it is eligible.
    """
    try:
        booking = bookings.get_booking(booking_id)
    except Exception as e:
        logger.error(f"Booking lookup failed for {booking_id}: {e}")
        return integration_error(
            "BOOKING_SERVICE_FAILED", "Booking service unavailable", booking_id=booking_id
        )
    if booking is None:
        return not_found("BOOKING_NOT_FOUND", "Booking not found", booking_id=booking_id)
    if booking.owner_id != proposer_id:
        return validation_error(
            "BOOKING_NOT_ELIGIBLE", "Booking does not belong to the proposer", booking_id=booking_id
        )
    if not booking.is_available:
        return validation_error(
            "BOOKING_NOT_ELIGIBLE",
            f"Booking is {booking.status}, not available",
            booking_id=booking_id,
        )
    return None


def _state(auction: Auction) -> Dict[str, Any]:
    """Authoritative auction state attached to conflicts."""
    return {
        "auction_id": auction.id,
        "status": auction.status.value,
        "end_reason": auction.end_reason.value if auction.end_reason else None,
        "winning_proposal_id": auction.winning_proposal_id,
    }


# =============================================================================
# Auction Lifecycle Manager
# =============================================================================


class AuctionLifecycleManager:
    """
    Orchestrates auctions for swap offers.

    Args:
        repository: Swap/auction/proposal storage
        bookings: Booking lookup collaborator
        escrow: Escrow collaborator for cash proposals
        notifier: Notification dispatcher (fire-and-forget)
        locks: Per-auction lock registry
        config: Engine configuration
        policy: Automatic winner selection policy
        clock: Source of the current UTC time
    """

    def __init__(
        self,
        repository: Repository,
        bookings: BookingLookup,
        escrow: EscrowService,
        notifier: NotificationDispatcher,
        locks: Optional[AuctionLockRegistry] = None,
        config: Optional[EngineConfig] = None,
        policy: Optional[WinnerSelectionPolicy] = None,
        clock: Clock = utc_now,
    ):
        self.repository = repository
        self.bookings = bookings
        self.escrow = escrow
        self.notifier = notifier
        self.locks = locks if locks is not None else AuctionLockRegistry()
        self.config = config or EngineConfig()
        self.policy = policy or WinnerSelectionPolicy()
        self.clock = clock

    @property
    def min_lead(self) -> timedelta:
        return timedelta(days=self.config.min_auction_lead_days)

    def ledger(self, auction_id: str) -> ProposalLedger:
        return ProposalLedger(auction_id, self.repository)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _hold(self, auction: Auction):
        """Swap lock, then auction lock."""
        return self.locks.hold_all(auction.swap_id, auction.id)

    def _load_auction(self, auction_id: str) -> Result:
        auction = self.repository.get_auction(auction_id)
        if auction is None:
            return fail(not_found("AUCTION_NOT_FOUND", "Auction not found", auction_id=auction_id))
        return Result.success(auction)

    def _storage_failure(self, e: StorageError, subject: str) -> Result:
        logger.error(f"Storage failure for {subject}: {e}")
        return fail(integration_error("STORAGE_FAILED", "Storage unavailable", subject=subject))

    def _notify(self, event: str, recipient_id: str, **payload: Any) -> None:
        dispatch(self.notifier, event, recipient_id, payload)

    def _refund(self, proposal: Proposal) -> bool:
        """Refund a cash proposal's escrow. Failures are logged, not raised."""
        try:
            self.escrow.refund_escrow(proposal.id)
            return True
        except Exception as e:
            logger.error(f"Escrow refund failed for proposal {proposal.id}: {e}")
            return False

    def _event_date(self, booking_id: str) -> Result:
        """Check-in date of a booking, as aware UTC."""
        try:
            booking = self.bookings.get_booking(booking_id)
        except Exception as e:
            logger.error(f"Booking lookup failed for {booking_id}: {e}")
            return fail(integration_error(
                "BOOKING_SERVICE_FAILED", "Booking service unavailable", booking_id=booking_id
            ))
        if booking is None:
            return fail(not_found("BOOKING_NOT_FOUND", "Booking not found", booking_id=booking_id))
        if booking.check_in is None:
            return fail(integration_error(
                "MALFORMED_BOOKING_DATA", "Booking has no check-in date", booking_id=booking_id
            ))
        return Result.success(as_utc(booking.check_in))

    def event_date_for(self, auction: Auction) -> Result:
        swap = self.repository.get_swap(auction.swap_id)
        if swap is None:
            return fail(not_found("SWAP_NOT_FOUND", "Swap not found", swap_id=auction.swap_id))
        return self._event_date(swap.source_booking_id)

    # =========================================================================
    # Creation
    # =========================================================================

    def check_auction_availability(self, booking_id: str, now: Optional[datetime] = None) -> Result:
        """
        Report whether a booking can be auctioned.

        Returns:
            Result with AuctionAvailability
        """
        now = as_utc(now) if now else self.clock()
        event = self._event_date(booking_id)
        if not event.ok:
            return event
        event_date = event.value

        if event_date - now < self.min_lead:
            return Result.success(AuctionAvailability(
                booking_id=booking_id,
                can_create=False,
                reason=f"Event is less than {self.config.min_auction_lead_days} days away",
                event_date=event_date,
            ))
        return Result.success(AuctionAvailability(
            booking_id=booking_id,
            can_create=True,
            event_date=event_date,
            latest_end_date=event_date - self.min_lead,
        ))

    def create_auction(
        self,
        swap_id: str,
        actor_id: Optional[str],
        settings: Any,
        now: Optional[datetime] = None,
    ) -> Result:
        """
        Attach an auction to a swap and switch it to the auction strategy.

        Args:
            swap_id: Swap to auction
            actor_id: Requesting user; must own the swap
            settings: AuctionSettings or a settings body mapping

        Returns:
            Result with the created Auction
        """
        now = as_utc(now) if now else self.clock()
        if not actor_id:
            return fail(not_authenticated())

        parsed = parse_auction_settings(settings)
        if not parsed.ok:
            return parsed
        settings = parsed.value

        valid, error = validate_auction_settings(settings, now, self.config.min_auto_select_hours)
        if not valid:
            return fail(validation_error("INVALID_SETTINGS", error))

        try:
            swap = self.repository.get_swap(swap_id)
            if swap is None:
                return fail(not_found("SWAP_NOT_FOUND", "Swap not found", swap_id=swap_id))
            if swap.owner_id != actor_id:
                return fail(forbidden("NOT_OWNER", "Only the swap owner can create an auction"))
            if not swap.is_open:
                return fail(conflict(
                    "SWAP_NOT_AVAILABLE", f"Swap is {swap.status.value}",
                    swap_id=swap_id, status=swap.status.value,
                ))

            event = self._event_date(swap.source_booking_id)
            if not event.ok:
                return event
            valid, error = validate_auction_timing(settings.end_date, event.value, now, self.min_lead)
            if not valid:
                return fail(validation_error("INVALID_SETTINGS", error, event_date=event.value.isoformat()))

            with self.locks.hold(swap_id):
                swap = self.repository.get_swap(swap_id)
                if not swap.is_open:
                    return fail(conflict(
                        "SWAP_NOT_AVAILABLE", f"Swap is {swap.status.value}",
                        swap_id=swap_id, status=swap.status.value,
                    ))
                existing = self.repository.get_auction_for_swap(swap_id)
                if existing is not None:
                    return fail(conflict(
                        "AUCTION_EXISTS", "Swap already has an auction", **_state(existing)
                    ))

                auction = Auction(
                    swap_id=swap.id,
                    owner_id=swap.owner_id,
                    settings=settings,
                    created_at=now,
                )
                swap.acceptance_strategy = AcceptanceStrategy.AUCTION
                try:
                    self.repository.add_auction(auction, swap)
                except UniqueViolation:
                    existing = self.repository.get_auction_for_swap(swap_id)
                    return fail(conflict(
                        "AUCTION_EXISTS", "Swap already has an auction",
                        **(_state(existing) if existing else {}),
                    ))
        except StorageError as e:
            return self._storage_failure(e, f"swap {swap_id}")

        logger.info(
            f"Auction created: {auction.id[:8]} swap={swap_id[:8]} "
            f"ends={settings.end_date.isoformat()}"
        )
        return Result.success(auction)

    # =========================================================================
    # Proposals
    # =========================================================================

    def _check_offer(self, settings: AuctionSettings, proposal: Proposal) -> Optional[EngineError]:
        offer = proposal.offer
        if isinstance(offer, BookingOffer):
            if not settings.allow_booking_proposals:
                return validation_error(
                    "PROPOSAL_TYPE_NOT_ALLOWED", "Booking proposals are not allowed in this auction",
                    proposal_type=ProposalType.BOOKING.value,
                )
            return check_proposed_booking(self.bookings, proposal.proposer_id, offer.booking_id)

        if isinstance(offer, CashOffer):
            if not settings.allow_cash_proposals:
                return validation_error(
                    "PROPOSAL_TYPE_NOT_ALLOWED", "Cash proposals are not allowed in this auction",
                    proposal_type=ProposalType.CASH.value,
                )
            minimum = settings.minimum_cash_offer
            if minimum is not None and offer.amount < minimum:
                return validation_error(
                    "CASH_OFFER_BELOW_MINIMUM",
                    f"Cash offer {offer.amount} is below the minimum {minimum}",
                    minimum=str(minimum), amount=str(offer.amount),
                )
            return None

        raise TypeError(f"Unknown offer variant: {type(offer).__name__}")

    def submit_proposal(
        self,
        auction_id: str,
        proposer_id: Optional[str],
        body: Any,
        now: Optional[datetime] = None,
    ) -> Result:
        """
        Submit a proposal to an active auction.

        Args:
            auction_id: Target auction
            proposer_id: Submitting user
            body: Proposal body mapping (or parsed body)

        Returns:
            Result with the stored Proposal (status pending). Retrying with
            the same idempotency key returns the original proposal.
        """
        now = as_utc(now) if now else self.clock()
        if not proposer_id:
            return fail(not_authenticated())

        parsed = parse_proposal_body(body)
        if not parsed.ok:
            return parsed
        body = parsed.value

        try:
            loaded = self._load_auction(auction_id)
            if not loaded.ok:
                return loaded

            proposal = Proposal(
                auction_id=auction_id,
                proposer_id=proposer_id,
                offer=body.to_offer(),
                message=body.message,
                conditions=list(body.conditions),
                created_at=now,
                idempotency_key=body.idempotency_key,
            )
            with self._hold(loaded.value):
                return self._submit_locked(proposal, now)
        except StorageError as e:
            return self._storage_failure(e, f"auction {auction_id}")

    def _submit_locked(self, proposal: Proposal, now: datetime) -> Result:
        auction = self.repository.get_auction(proposal.auction_id)
        ledger = self.ledger(auction.id)

        retried = ledger.find_retry(proposal.proposer_id, proposal.idempotency_key)
        if retried is not None:
            logger.debug(f"Retry of {retried!r} returned unchanged")
            return Result.success(retried)

        if not auction.is_active or auction.is_expired(now):
            logger.debug(f"Proposal rejected: auction {auction.id[:8]} not active")
            return fail(conflict(
                "AUCTION_NOT_ACTIVE", "Auction is not accepting proposals",
                end_date=auction.settings.end_date.isoformat(), **_state(auction),
            ))

        swap = self.repository.get_swap(auction.swap_id)
        if swap is None:
            return fail(not_found("SWAP_NOT_FOUND", "Swap not found", swap_id=auction.swap_id))
        if proposal.proposer_id == swap.owner_id:
            return fail(validation_error("SELF_PROPOSAL", "Owners cannot bid on their own swap"))

        error = self._check_offer(auction.settings, proposal)
        if error is not None:
            logger.debug(f"Proposal rejected for auction {auction.id[:8]}: {error.code}")
            return fail(error)

        existing = ledger.find_duplicate(proposal)
        if existing is not None:
            return fail(conflict(
                "DUPLICATE_PROPOSAL", "A pending proposal for this booking already exists",
                auction_id=auction.id, existing_proposal_id=existing.id,
            ))

        escrowed = False
        if proposal.holds_escrow:
            offer = proposal.offer
            try:
                self.escrow.create_escrow(
                    proposal.id, offer.amount, offer.currency, offer.payment_method_id
                )
                escrowed = True
            except Exception as e:
                logger.error(f"Escrow creation failed for proposal {proposal.id}: {e}")
                return fail(integration_error(
                    "ESCROW_FAILED", "Could not hold escrow for the cash offer",
                    auction_id=auction.id,
                ))

        result = ledger.append(proposal)
        if escrowed and (not result.ok or result.value.id != proposal.id):
            # Compensate: the hold belongs to a proposal that was never stored
            self._refund(proposal)
        if not result.ok:
            return result

        stored = result.value
        if stored.id == proposal.id:
            self._notify(
                "proposal_received", swap.owner_id,
                auction_id=auction.id, proposal_id=stored.id,
                proposal_type=stored.proposal_type.value,
            )
        return Result.success(stored)

    def withdraw_proposal(
        self, auction_id: str, proposal_id: str, actor_id: Optional[str]
    ) -> Result:
        """
        Withdraw a pending proposal before a winner exists.

        Escrow is refunded first; if the refund fails nothing changes and the
        call can be retried.
        """
        if not actor_id:
            return fail(not_authenticated())
        try:
            loaded = self._load_auction(auction_id)
            if not loaded.ok:
                return loaded
            with self._hold(loaded.value):
                auction = self.repository.get_auction(auction_id)
                ledger = self.ledger(auction_id)
                proposal = ledger.find(proposal_id)
                if proposal is None:
                    return fail(not_found(
                        "PROPOSAL_NOT_FOUND", "Proposal not found", proposal_id=proposal_id
                    ))
                if proposal.proposer_id != actor_id:
                    return fail(forbidden("NOT_PROPOSER", "Only the proposer can withdraw a proposal"))
                if auction.has_winner:
                    return fail(conflict(
                        "WINNER_ALREADY_SELECTED", "A winner has already been selected", **_state(auction)
                    ))
                if not proposal.is_pending:
                    return fail(conflict(
                        "INVALID_PROPOSAL_STATE", f"Proposal is {proposal.status.value}",
                        proposal_id=proposal_id, status=proposal.status.value,
                    ))

                if proposal.holds_escrow:
                    try:
                        self.escrow.refund_escrow(proposal.id)
                    except Exception as e:
                        logger.error(f"Escrow refund failed for proposal {proposal.id}: {e}")
                        return fail(integration_error(
                            "ESCROW_FAILED", "Could not refund escrow", proposal_id=proposal_id
                        ))

                if not ledger.mark(proposal_id, ProposalStatus.WITHDRAWN):
                    current = ledger.find(proposal_id)
                    return fail(conflict(
                        "INVALID_PROPOSAL_STATE", f"Proposal is {current.status.value}",
                        proposal_id=proposal_id, status=current.status.value,
                    ))
                withdrawn = ledger.find(proposal_id)
        except StorageError as e:
            return self._storage_failure(e, f"auction {auction_id}")

        logger.info(f"Proposal withdrawn: {proposal_id[:8]} auction={auction_id[:8]}")
        return Result.success(withdrawn)

    def compare_proposals(self, auction_id: str) -> Result:
        """
        Read-only comparison of pending proposals.

        Returns:
            Result with ProposalComparison
        """
        try:
            loaded = self._load_auction(auction_id)
            if not loaded.ok:
                return loaded
            auction = loaded.value
            pending = self.ledger(auction_id).pending()
        except StorageError as e:
            return self._storage_failure(e, f"auction {auction_id}")

        bookings = [p for p in pending if p.proposal_type == ProposalType.BOOKING]
        cash = sorted(
            (p for p in pending if p.proposal_type == ProposalType.CASH),
            key=lambda p: (-p.cash_amount, p.sequence),
        )
        return Result.success(ProposalComparison(
            auction_id=auction_id,
            booking_proposals=bookings,
            cash_proposals=cash,
            highest_cash=cash[0] if cash else None,
            recommended=self.policy.select_automatic(pending, auction.settings),
        ))

    # =========================================================================
    # Ending
    # =========================================================================

    def _announce_end(self, auction: Auction, reason: EndReason) -> None:
        self._notify("auction_ended", auction.owner_id, auction_id=auction.id, reason=reason.value)
        for proposal in self.ledger(auction.id).pending():
            self._notify(
                "auction_ended", proposal.proposer_id,
                auction_id=auction.id, proposal_id=proposal.id, reason=reason.value,
            )

    def end_auction(
        self, auction_id: str, actor_id: Optional[str], now: Optional[datetime] = None
    ) -> Result:
        """
        Owner closes the auction. No winner is assigned.

        Returns:
            Result with the ended Auction; ALREADY_ENDED if not active
        """
        now = as_utc(now) if now else self.clock()
        if not actor_id:
            return fail(not_authenticated())
        try:
            loaded = self._load_auction(auction_id)
            if not loaded.ok:
                return loaded
            if loaded.value.owner_id != actor_id:
                return fail(forbidden("NOT_OWNER", "Only the swap owner can end the auction"))

            with self._hold(loaded.value):
                auction = self.repository.get_auction(auction_id)
                if not auction.is_active or not self.repository.end_auction_if_active(
                    auction_id, now, EndReason.OWNER
                ):
                    auction = self.repository.get_auction(auction_id)
                    return fail(conflict("ALREADY_ENDED", "Auction has already ended", **_state(auction)))
                ended = self.repository.get_auction(auction_id)
                self._announce_end(ended, EndReason.OWNER)
        except StorageError as e:
            return self._storage_failure(e, f"auction {auction_id}")

        logger.info(f"Auction ended by owner: {auction_id[:8]}")
        return Result.success(ended)

    def select_winner(
        self, auction_id: str, actor_id: Optional[str], proposal_id: str
    ) -> Result:
        """
        Owner picks the winning proposal of an ended auction.

        Idempotent for the same proposal id. Bypasses the automatic policy.

        Returns:
            Result with the resolved Auction
        """
        if not actor_id:
            return fail(not_authenticated())
        try:
            loaded = self._load_auction(auction_id)
            if not loaded.ok:
                return loaded
            if loaded.value.owner_id != actor_id:
                return fail(forbidden("NOT_OWNER", "Only the swap owner can select a winner"))

            with self._hold(loaded.value):
                auction = self.repository.get_auction(auction_id)
                if auction.has_winner:
                    if auction.winning_proposal_id == proposal_id:
                        return Result.success(auction)
                    return fail(conflict(
                        "WINNER_ALREADY_SELECTED", "A different winner has already been selected",
                        **_state(auction),
                    ))
                if auction.is_cancelled:
                    return fail(conflict("AUCTION_CANCELLED", "Auction was cancelled", **_state(auction)))
                if auction.is_active:
                    return fail(conflict(
                        "AUCTION_NOT_ENDED", "End the auction before selecting a winner", **_state(auction)
                    ))

                proposal = self.ledger(auction_id).find(proposal_id)
                if proposal is None:
                    return fail(not_found(
                        "PROPOSAL_NOT_FOUND", "Proposal not found in this auction", proposal_id=proposal_id
                    ))
                if not proposal.is_pending:
                    return fail(conflict(
                        "INVALID_PROPOSAL_STATE", f"Proposal is {proposal.status.value}",
                        proposal_id=proposal_id, status=proposal.status.value,
                    ))
                return self._commit_winner(auction, proposal, auto_selected=False)
        except StorageError as e:
            return self._storage_failure(e, f"auction {auction_id}")

    def _commit_winner(self, auction: Auction, proposal: Proposal, auto_selected: bool) -> Result:
        """Compare-and-set the winner, then settle escrow and notify."""
        ledger = self.ledger(auction.id)
        losers = [p for p in ledger.pending() if p.id != proposal.id]

        swap = self.repository.get_swap(auction.swap_id)
        cash = proposal.offer if isinstance(proposal.offer, CashOffer) else None
        swap.accept(
            proposal.id,
            proposal.proposer_id,
            booking_id=proposal.booking_id,
            cash_amount=cash.amount if cash else None,
            currency=cash.currency if cash else None,
        )

        if not self.repository.commit_winner(auction.id, proposal.id, swap, auto_selected):
            current = self.repository.get_auction(auction.id)
            if current.winning_proposal_id == proposal.id:
                return Result.success(current)
            if current.has_winner:
                return fail(conflict(
                    "WINNER_ALREADY_SELECTED", "A different winner has already been selected",
                    **_state(current),
                ))
            if current.is_cancelled:
                return fail(conflict("AUCTION_CANCELLED", "Auction was cancelled", **_state(current)))
            latest = ledger.find(proposal.id)
            return fail(conflict(
                "INVALID_PROPOSAL_STATE", f"Proposal is {latest.status.value}",
                proposal_id=proposal.id, status=latest.status.value,
            ))

        logger.info(
            f"Winner selected: auction={auction.id[:8]} proposal={proposal.id[:8]} "
            f"auto={auto_selected}"
        )

        for loser in losers:
            if loser.holds_escrow:
                self._refund(loser)
            self._notify("auction_lost", loser.proposer_id, auction_id=auction.id, proposal_id=loser.id)
        self._notify("auction_won", proposal.proposer_id, auction_id=auction.id, proposal_id=proposal.id)
        if auto_selected:
            self._notify(
                "auto_selection", auction.owner_id, auction_id=auction.id, proposal_id=proposal.id
            )

        return Result.success(self.repository.get_auction(auction.id))

    def _downgrade(self, auction: Auction) -> bool:
        """Fall the owning swap back to first_match. Returns True if changed."""
        swap = self.repository.get_swap(auction.swap_id)
        if swap is None or swap.is_terminal:
            return False
        if swap.acceptance_strategy != AcceptanceStrategy.AUCTION:
            return False
        if not self.repository.update_swap_strategy(
            swap.id, AcceptanceStrategy.FIRST_MATCH, AcceptanceStrategy.AUCTION
        ):
            return False
        logger.info(f"Strategy downgraded to first_match: swap={swap.id[:8]} auction={auction.id[:8]}")
        self._notify("strategy_downgraded", swap.owner_id, auction_id=auction.id, swap_id=swap.id)
        return True

    # =========================================================================
    # Timeout resolution
    # =========================================================================

    def handle_timeout(self, auction_id: str, now: Optional[datetime] = None) -> Result:
        """
        Resolve an auction whose time has come.

        - ACTIVE before end_date: no-op
        - ACTIVE at/after end_date: ends it (reason timeout)
        - ended without winner: automatic selection once the auto-select
          deadline (end_date + auto_select_after_hours) has passed; a
          selection reminder once if auto-selection is not configured
        - no pending proposals: swap downgraded to first_match

        Safe to call any number of times.

        Returns:
            Result with a Resolution
        """
        now = as_utc(now) if now else self.clock()
        try:
            loaded = self._load_auction(auction_id)
            if not loaded.ok:
                return loaded
            with self._hold(loaded.value):
                auction = self.repository.get_auction(auction_id)
                ended_now = False
                if auction.is_active:
                    if not auction.is_expired(now):
                        return Result.success(Resolution(auction_id, ResolutionAction.NOOP))
                    if self.repository.end_auction_if_active(auction_id, now, EndReason.TIMEOUT):
                        ended_now = True
                        logger.info(f"Auction ended by timeout: {auction_id[:8]}")
                    auction = self.repository.get_auction(auction_id)
                    if ended_now:
                        self._announce_end(auction, EndReason.TIMEOUT)
                return self._resolve_ended(auction, now, ended_now)
        except StorageError as e:
            return self._storage_failure(e, f"auction {auction_id}")

    def _resolve_ended(self, auction: Auction, now: datetime, ended_now: bool) -> Result:
        idle = ResolutionAction.ENDED if ended_now else ResolutionAction.NOOP
        if auction.has_winner or auction.is_cancelled:
            return Result.success(Resolution(auction.id, idle, auction.winning_proposal_id))

        pending = self.ledger(auction.id).pending()
        if not pending:
            if self._downgrade(auction):
                return Result.success(Resolution(auction.id, ResolutionAction.DOWNGRADED))
            return Result.success(Resolution(auction.id, idle))

        if auction.auto_select_due(now):
            winner = self.policy.select_automatic(pending, auction.settings)
            if winner is None:
                if self._downgrade(auction):
                    return Result.success(Resolution(auction.id, ResolutionAction.DOWNGRADED))
                return Result.success(Resolution(auction.id, idle))
            committed = self._commit_winner(auction, winner, auto_selected=True)
            if not committed.ok:
                return committed
            return Result.success(Resolution(auction.id, ResolutionAction.AUTO_SELECTED, winner.id))

        if auction.settings.auto_select_after_hours is None and not auction.reminder_sent:
            self.repository.set_reminder_sent(auction.id)
            self._notify(
                "selection_reminder", auction.owner_id,
                auction_id=auction.id, pending_proposals=len(pending),
            )
            return Result.success(Resolution(auction.id, ResolutionAction.REMINDED))

        return Result.success(Resolution(auction.id, idle))

    def convert_to_first_match(
        self, auction_id: str, reason: str, now: Optional[datetime] = None
    ) -> Result:
        """
        End an active auction early, typically because its event is close.

        Pending proposals are resolved by the automatic policy; with none,
        the swap falls back to first_match.

        Returns:
            Result with a Resolution (action converted)
        """
        now = as_utc(now) if now else self.clock()
        try:
            loaded = self._load_auction(auction_id)
            if not loaded.ok:
                return loaded
            with self._hold(loaded.value):
                if not self.repository.end_auction_if_active(auction_id, now, EndReason.CONVERTED):
                    auction = self.repository.get_auction(auction_id)
                    return fail(conflict("ALREADY_ENDED", "Auction has already ended", **_state(auction)))
                auction = self.repository.get_auction(auction_id)
                logger.info(f"Auction converted to first-match: {auction_id[:8]} ({reason})")
                self._announce_end(auction, EndReason.CONVERTED)

                pending = self.ledger(auction_id).pending()
                winner = self.policy.select_automatic(pending, auction.settings)
                if winner is None:
                    self._downgrade(auction)
                    return Result.success(Resolution(auction_id, ResolutionAction.CONVERTED))
                committed = self._commit_winner(auction, winner, auto_selected=True)
                if not committed.ok:
                    return committed
                return Result.success(Resolution(auction_id, ResolutionAction.CONVERTED, winner.id))
        except StorageError as e:
            return self._storage_failure(e, f"auction {auction_id}")

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel_for_swap(self, swap_id: str, now: Optional[datetime] = None) -> Result:
        """
        End the swap's auction without a winner and unwind its proposals.

        Pending proposals are rejected and escrowed cash is refunded. Refund
        failures are logged; cancellation is not rolled back.

        Returns:
            Result with the cancelled Auction, or None if the swap has none
        """
        now = as_utc(now) if now else self.clock()
        try:
            auction = self.repository.get_auction_for_swap(swap_id)
            if auction is None:
                return Result.success(None)
            with self._hold(auction):
                auction = self.repository.get_auction(auction.id)
                if auction.is_cancelled:
                    return Result.success(auction)
                if auction.has_winner or not self.repository.cancel_auction(auction.id, now):
                    auction = self.repository.get_auction(auction.id)
                    return fail(conflict(
                        "WINNER_ALREADY_SELECTED", "Auction already has a winner", **_state(auction)
                    ))

                ledger = self.ledger(auction.id)
                for proposal in ledger.pending():
                    ledger.mark(proposal.id, ProposalStatus.REJECTED)
                    if proposal.holds_escrow:
                        self._refund(proposal)
                    self._notify(
                        "auction_cancelled", proposal.proposer_id,
                        auction_id=auction.id, proposal_id=proposal.id,
                    )
                cancelled = self.repository.get_auction(auction.id)
        except StorageError as e:
            return self._storage_failure(e, f"swap {swap_id}")

        logger.info(f"Auction cancelled with swap: auction={cancelled.id[:8]} swap={swap_id[:8]}")
        return Result.success(cancelled)

    # =========================================================================
    # Stats
    # =========================================================================

    def stats(self) -> dict:
        """Get auction statistics."""
        auctions = self.repository.list_auctions()
        return {
            "auctions": len(auctions),
            "active": sum(1 for a in auctions if a.status == AuctionStatus.ACTIVE),
            "ended": sum(1 for a in auctions if a.status == AuctionStatus.ENDED),
            "with_winner": sum(1 for a in auctions if a.has_winner),
            "auto_selected": sum(1 for a in auctions if a.auto_selected),
            "cancelled": sum(1 for a in auctions if a.is_cancelled),
            "proposals": sum(len(self.repository.list_proposals(a.id)) for a in auctions),
        }
