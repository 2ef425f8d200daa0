"""
Input Validation - checks on identifiers, settings and offer data.

All validators return (is_valid, error_message) and never raise, so callers
can turn a failure into a validation result before touching any state.
"""

import uuid
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Tuple

# =============================================================================
# Constants
# =============================================================================

MAX_IDENTIFIER_LENGTH = 64
MAX_AUTO_SELECT_HOURS = 24 * 30


# =============================================================================
# Validation Functions
# =============================================================================


def validate_identifier(value: Any, name: str = "id") -> Tuple[bool, str]:
    """
    Validate a UUID identifier.

    Args:
        value: Identifier to validate
        name: Field name for error messages

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str) or not value:
        return False, f"{name} is required"

    if len(value) > MAX_IDENTIFIER_LENGTH:
        return False, f"{name} exceeds max length {MAX_IDENTIFIER_LENGTH}"

    try:
        uuid.UUID(value)
    except ValueError:
        return False, f"{name} must be a valid UUID, got {value!r}"

    return True, ""


def validate_amount(value: Any, name: str = "amount") -> Tuple[bool, str]:
    """Validate a strictly positive monetary amount."""
    if isinstance(value, bool) or not isinstance(value, (int, Decimal, str)):
        return False, f"{name} must be a decimal amount, got {type(value).__name__}"

    try:
        amount = Decimal(value)
    except InvalidOperation:
        return False, f"{name} must be a decimal amount, got {value!r}"

    if not amount.is_finite() or amount <= 0:
        return False, f"{name} must be > 0, got {value}"

    return True, ""


def validate_aware_datetime(value: Any, name: str) -> Tuple[bool, str]:
    if not isinstance(value, datetime):
        return False, f"{name} must be a datetime, got {type(value).__name__}"
    if value.tzinfo is None or value.utcoffset() is None:
        return False, f"{name} must be timezone-aware"
    return True, ""


def validate_auction_settings(
    settings: Any,
    now: datetime,
    min_auto_select_hours: int = 1,
) -> Tuple[bool, str]:
    """
    Validate owner-chosen auction settings.

    Rules:
    - end_date is timezone-aware and in the future
    - at least one proposal type is allowed
    - auto_select_after_hours, when set, is within bounds
    - minimum_cash_offer, when set, is positive

    Returns:
        (is_valid, error_message)
    """
    valid, error = validate_aware_datetime(settings.end_date, "end_date")
    if not valid:
        return False, error

    if settings.end_date <= now:
        return False, "end_date must be in the future"

    if not settings.allow_booking_proposals and not settings.allow_cash_proposals:
        return False, "At least one proposal type must be allowed"

    hours = settings.auto_select_after_hours
    if hours is not None:
        if isinstance(hours, bool) or not isinstance(hours, int):
            return False, f"auto_select_after_hours must be int, got {type(hours).__name__}"
        if hours < min_auto_select_hours:
            return False, f"auto_select_after_hours must be >= {min_auto_select_hours}, got {hours}"
        if hours > MAX_AUTO_SELECT_HOURS:
            return False, f"auto_select_after_hours must be <= {MAX_AUTO_SELECT_HOURS}, got {hours}"

    if settings.minimum_cash_offer is not None:
        valid, error = validate_amount(settings.minimum_cash_offer, "minimum_cash_offer")
        if not valid:
            return False, error

    return True, ""


def validate_auction_timing(
    end_date: datetime,
    event_date: datetime,
    now: datetime,
    min_lead: timedelta,
) -> Tuple[bool, str]:
    """
    Validate an auction window against the booked event.

    The event must be at least `min_lead` away, and bidding must close at
    least `min_lead` before it.
    """
    if event_date - now < min_lead:
        return False, f"Event is less than {min_lead.days} days away; auctions are not available"

    latest_end = event_date - min_lead
    if end_date > latest_end:
        return False, f"Auction must end by {latest_end.isoformat()} ({min_lead.days} days before the event)"

    return True, ""
