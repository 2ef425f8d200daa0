"""
Request body schemas.

Incoming bodies are untrusted mappings. They are parsed here into typed
models before any engine state is touched; a body that names both a
booking and a cash offer, or neither, is rejected outright.
"""

from decimal import Decimal
from typing import Annotated, Any, List, Literal, Mapping, Optional, Union

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from swapmatch.core.auction.auction import AuctionSettings
from swapmatch.core.auction.proposal import BookingOffer, CashOffer, Offer
from swapmatch.core.errors import Result, validation_error
from swapmatch.core.swap.offer import PaymentPreferences


class _Body(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class BookingProposalBody(_Body):
    """Offer one of the proposer's own bookings in exchange."""
    proposal_type: Literal["booking"]
    booking_id: str = Field(min_length=1)
    message: str = Field(default="", max_length=2000)
    conditions: List[str] = Field(default_factory=list)
    idempotency_key: Optional[str] = Field(default=None, min_length=1, max_length=128)

    def to_offer(self) -> Offer:
        return BookingOffer(booking_id=self.booking_id)


class CashProposalBody(_Body):
    """Offer an amount of money."""
    proposal_type: Literal["cash"]
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    currency: str = Field(pattern=r"^[A-Z]{3}$")
    payment_method_id: str = Field(min_length=1)
    escrow_agreement: bool = False
    message: str = Field(default="", max_length=2000)
    conditions: List[str] = Field(default_factory=list)
    idempotency_key: Optional[str] = Field(default=None, min_length=1, max_length=128)

    def to_offer(self) -> Offer:
        return CashOffer(
            amount=self.amount,
            currency=self.currency,
            payment_method_id=self.payment_method_id,
            escrow_agreement=self.escrow_agreement,
        )


ProposalBody = Annotated[
    Union[BookingProposalBody, CashProposalBody],
    Field(discriminator="proposal_type"),
]

_proposal_adapter = TypeAdapter(ProposalBody)


class AuctionSettingsBody(_Body):
    """Owner-supplied auction settings."""
    end_date: AwareDatetime
    allow_booking_proposals: bool = True
    allow_cash_proposals: bool = False
    minimum_cash_offer: Optional[Decimal] = Field(default=None, gt=0)
    auto_select_after_hours: Optional[int] = Field(default=None, ge=1)

    def to_settings(self) -> AuctionSettings:
        return AuctionSettings(
            end_date=self.end_date,
            allow_booking_proposals=self.allow_booking_proposals,
            allow_cash_proposals=self.allow_cash_proposals,
            minimum_cash_offer=self.minimum_cash_offer,
            auto_select_after_hours=self.auto_select_after_hours,
        )


class SwapBody(_Body):
    """New swap listing."""
    source_booking_id: str = Field(min_length=1)
    booking_exchange: bool = True
    cash_accepted: bool = False
    minimum_cash_amount: Optional[Decimal] = Field(default=None, gt=0)

    def to_preferences(self) -> PaymentPreferences:
        return PaymentPreferences(
            booking_exchange=self.booking_exchange,
            cash_accepted=self.cash_accepted,
            minimum_cash_amount=self.minimum_cash_amount,
        )


# =============================================================================
# Parsing
# =============================================================================


def _errors(exc: ValidationError) -> List[dict]:
    return [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]


def _parse(adapter_or_model: Any, raw: Any, what: str) -> Result:
    if isinstance(adapter_or_model, TypeAdapter):
        validate = adapter_or_model.validate_python
    else:
        validate = adapter_or_model.model_validate
    if not isinstance(raw, Mapping):
        return Result.failure(
            validation_error("VALIDATION_FAILED", f"{what} must be an object")
        )
    try:
        return Result.success(validate(dict(raw)))
    except ValidationError as e:
        return Result.failure(
            validation_error("VALIDATION_FAILED", f"Invalid {what}", errors=_errors(e))
        )


def parse_proposal_body(raw: Any) -> Result:
    """Parse a proposal body into BookingProposalBody or CashProposalBody."""
    if isinstance(raw, (BookingProposalBody, CashProposalBody)):
        return Result.success(raw)
    return _parse(_proposal_adapter, raw, "proposal body")


def parse_auction_settings(raw: Any) -> Result:
    """Parse auction settings into AuctionSettings."""
    if isinstance(raw, AuctionSettings):
        return Result.success(raw)
    result = _parse(AuctionSettingsBody, raw, "auction settings")
    if not result.ok:
        return result
    return Result.success(result.value.to_settings())


def parse_swap_body(raw: Any) -> Result:
    return _parse(SwapBody, raw, "swap body")
