"""
Compatibility scoring - deterministic multi-factor comparison of two offers.

Five independent factors, each scored 0-100:
- location: exact / same region / same country / same continent, with a
  distance adjustment for known cities
- date: duration similarity (overlapping stays score low), seasonal bonus
- value: percentage difference of total prices
- accommodation: type similarity plus a luxury-level adjustment
- guests: head-count closeness plus a capacity-utilization adjustment

The overall score is the weighted sum of factor scores. Weights are held as
integer percentages so the sum is exact and rounding is half-up:

    overall = (sum(score_i * weight_i) + 50) // 100

Pure functions only: no I/O, no clock, no randomness.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from swapmatch.core.coordination import as_utc
from swapmatch.utils.logger import get_logger

logger = get_logger("scoring")


# =============================================================================
# Constants
# =============================================================================

FACTORS = ("location", "date", "value", "accommodation", "guests")

# Integer percentages; must sum to 100
WEIGHTS = {
    "location": 25,
    "date": 30,
    "value": 20,
    "accommodation": 15,
    "guests": 10,
}

# Factor score -> status
EXCELLENT_THRESHOLD = 85
GOOD_THRESHOLD = 65
FAIR_THRESHOLD = 40

# Overall score -> tier
HIGHLY_RECOMMENDED_THRESHOLD = 90
RECOMMENDED_THRESHOLD = 70
POSSIBLE_THRESHOLD = 40

# Factors under this score count towards "multiple concerns"
LOW_SCORE = 50
MULTIPLE_CONCERNS_COUNT = 3

EARTH_RADIUS_KM = 6371


class FactorStatus(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class RecommendationTier(str, Enum):
    HIGHLY_RECOMMENDED = "highly_recommended"
    RECOMMENDED = "recommended"
    POSSIBLE = "possible"
    NOT_RECOMMENDED = "not_recommended"


# =============================================================================
# Reference tables
# =============================================================================

REGIONS = [
    ["new york", "manhattan", "brooklyn", "queens", "bronx", "staten island", "nyc"],
    ["los angeles", "hollywood", "beverly hills", "santa monica", "west hollywood", "la"],
    ["san francisco", "oakland", "berkeley", "san jose", "bay area"],
    ["chicago", "evanston", "naperville", "schaumburg"],
    ["miami", "south beach", "coral gables", "key biscayne"],
    ["london", "westminster", "kensington", "chelsea", "camden", "greenwich"],
    ["paris", "montmartre", "marais", "saint germain", "champs elysees"],
    ["rome", "vatican", "trastevere", "centro storico"],
    ["barcelona", "gothic quarter", "eixample", "gracia"],
    ["tokyo", "shibuya", "shinjuku", "harajuku", "ginza", "roppongi"],
    ["singapore", "orchard", "marina bay", "sentosa"],
    ["hong kong", "central", "tsim sha tsui", "causeway bay"],
]

COUNTRIES = [
    ["usa", "united states", "america", "us", "new york", "los angeles", "chicago", "miami"],
    ["uk", "united kingdom", "england", "britain", "london", "manchester", "birmingham"],
    ["france", "french", "paris", "lyon", "marseille", "nice"],
    ["germany", "german", "berlin", "munich", "hamburg", "cologne"],
    ["italy", "italian", "rome", "milan", "florence", "venice"],
    ["spain", "spanish", "madrid", "barcelona", "seville", "valencia"],
    ["japan", "japanese", "tokyo", "osaka", "kyoto", "hiroshima"],
    ["australia", "australian", "sydney", "melbourne", "brisbane", "perth"],
]

CONTINENTS = [
    ["europe", "european", "uk", "france", "germany", "italy", "spain", "london", "paris"],
    ["north america", "america", "usa", "canada", "mexico", "united states", "new york"],
    ["asia", "asian", "japan", "china", "korea", "thailand", "singapore", "tokyo"],
    ["oceania", "australia", "new zealand", "sydney", "melbourne"],
    ["south america", "brazil", "argentina", "chile", "colombia"],
    ["africa", "south africa", "egypt", "morocco", "kenya"],
]

CITY_COORDINATES = {
    "new york": (40.7128, -74.0060),
    "los angeles": (34.0522, -118.2437),
    "london": (51.5074, -0.1278),
    "paris": (48.8566, 2.3522),
    "tokyo": (35.6762, 139.6503),
    "sydney": (-33.8688, 151.2093),
}

# Checked in order; more specific keywords first
ACCOMMODATION_TYPES = [
    ("bed and breakfast", "guesthouse"),
    ("guesthouse", "guesthouse"),
    ("b&b", "guesthouse"),
    ("hostel", "hostel"),
    ("condominium", "apartment"),
    ("condo", "apartment"),
    ("apartment", "apartment"),
    ("flat", "apartment"),
    ("resort", "resort"),
    ("hotel", "hotel"),
    ("motel", "hotel"),
    ("inn", "hotel"),
    ("villa", "villa"),
    ("cottage", "cottage"),
    ("cabin", "cottage"),
    ("house", "house"),
    ("home", "house"),
]

SIMILAR_TYPES = [
    {"hotel", "resort", "inn"},
    {"apartment", "condo", "flat"},
    {"house", "villa", "cottage"},
    {"hostel", "guesthouse"},
]

COMPATIBLE_TYPES = [
    {"hotel", "apartment"},
    {"resort", "villa"},
    {"apartment", "house"},
    {"inn", "guesthouse"},
    {"villa", "cottage"},
    {"hotel", "guesthouse"},
]

LUXURY_LEVELS = {
    "resort": 5,
    "villa": 4,
    "hotel": 3,
    "apartment": 2,
    "house": 2,
    "cottage": 2,
    "guesthouse": 1,
    "hostel": 1,
}
DEFAULT_LUXURY_LEVEL = 2

SEASONS = {
    3: "spring", 4: "spring", 5: "spring",
    6: "summer", 7: "summer", 8: "summer",
    9: "fall", 10: "fall", 11: "fall",
    12: "winter", 1: "winter", 2: "winter",
}
SEASON_ORDER = ["spring", "summer", "fall", "winter"]

# Shown for factors below "good", keyed by (factor, status)
RECOMMENDATIONS = {
    ("location", FactorStatus.FAIR): "Consider travel costs and logistics for both parties",
    ("location", FactorStatus.POOR): "Plan for long-distance travel and agree on logistics early",
    ("date", FactorStatus.FAIR): "Review date flexibility and coordination requirements",
    ("date", FactorStatus.POOR): "Confirm both parties can shift their dates before proposing",
    ("value", FactorStatus.FAIR): "Discuss potential additional payments or value adjustments",
    ("value", FactorStatus.POOR): "Agree on a cash top-up to balance the booking values",
    ("accommodation", FactorStatus.FAIR): "Ensure both parties are comfortable with accommodation differences",
    ("accommodation", FactorStatus.POOR): "Share photos and amenities to set accommodation expectations",
    ("guests", FactorStatus.FAIR): "Verify accommodation capacity for different guest counts",
    ("guests", FactorStatus.POOR): "Check that each accommodation can host the other party's group",
}

ISSUES = {
    "location": "Significant location difference may affect travel costs and logistics",
    "date": "Date incompatibility may require complex coordination or flexibility",
    "value": "Large value difference may require substantial additional payment",
    "accommodation": "Accommodation type mismatch may not meet expectations",
    "guests": "Guest count difference may affect accommodation suitability",
}
MULTIPLE_CONCERNS_ISSUE = "Multiple compatibility concerns - careful consideration recommended"

TIER_RECOMMENDATIONS = {
    RecommendationTier.HIGHLY_RECOMMENDED: "This appears to be an excellent swap match - highly recommended",
    RecommendationTier.RECOMMENDED: "This is a good swap opportunity with strong compatibility",
    RecommendationTier.POSSIBLE: "Moderate compatibility - discuss details before proceeding",
}


# =============================================================================
# Types
# =============================================================================


class InvalidInput(ValueError):
    """An offer lacks the data needed to score it."""

    def __init__(self, side: str, message: str):
        self.side = side
        super().__init__(f"{side}: {message}")


@runtime_checkable
class OfferLike(Protocol):
    """Anything carrying the booking details the scorer compares."""
    location: Optional[str]
    check_in: Optional[datetime]
    check_out: Optional[datetime]
    total_price: Optional[Decimal]
    accommodation_type: Optional[str]
    guests: Optional[int]


@dataclass(frozen=True)
class CompatibilityFactor:
    score: int
    weight: float
    status: FactorStatus
    details: str

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "weight": self.weight,
            "status": self.status.value,
            "details": self.details,
        }


@dataclass(frozen=True)
class CompatibilityResult:
    overall_score: int
    factors: Dict[str, CompatibilityFactor]
    recommendations: List[str] = field(default_factory=list)
    potential_issues: List[str] = field(default_factory=list)
    tier: RecommendationTier = RecommendationTier.NOT_RECOMMENDED

    def to_dict(self) -> dict:
        return {
            "overall_score": self.overall_score,
            "factors": {name: f.to_dict() for name, f in self.factors.items()},
            "recommendations": list(self.recommendations),
            "potential_issues": list(self.potential_issues),
            "recommendation": self.tier.value,
        }


@dataclass(frozen=True)
class _Offer:
    """Validated, normalized view of one side."""
    location: str
    check_in: datetime
    check_out: datetime
    total_price: Decimal
    accommodation: str
    guests: int


# =============================================================================
# Thresholds
# =============================================================================


def status_for(score: int) -> FactorStatus:
    if score >= EXCELLENT_THRESHOLD:
        return FactorStatus.EXCELLENT
    if score >= GOOD_THRESHOLD:
        return FactorStatus.GOOD
    if score >= FAIR_THRESHOLD:
        return FactorStatus.FAIR
    return FactorStatus.POOR


def tier_for(overall_score: int) -> RecommendationTier:
    if overall_score >= HIGHLY_RECOMMENDED_THRESHOLD:
        return RecommendationTier.HIGHLY_RECOMMENDED
    if overall_score >= RECOMMENDED_THRESHOLD:
        return RecommendationTier.RECOMMENDED
    if overall_score >= POSSIBLE_THRESHOLD:
        return RecommendationTier.POSSIBLE
    return RecommendationTier.NOT_RECOMMENDED


def weighted_score(scores: Dict[str, int]) -> int:
    """Weighted sum of factor scores, rounded half-up."""
    total = sum(scores[name] * WEIGHTS[name] for name in FACTORS)
    return (total + 50) // 100


def _clamp(score: int) -> int:
    return max(0, min(100, score))


# =============================================================================
# Normalization and validation
# =============================================================================


def normalize_location(location: str) -> str:
    return re.sub(r"[^\w\s]", "", location.lower().strip())


def _mentions(text: str, keyword: str) -> bool:
    """Whole-word (or whole-phrase) containment."""
    return re.search(r"\b" + re.escape(keyword) + r"\b", text) is not None


def normalize_accommodation(kind: Optional[str]) -> str:
    normalized = (kind or "").lower().strip()
    for keyword, canonical in ACCOMMODATION_TYPES:
        if keyword in normalized:
            return canonical
    return normalized


def _validate(offer: Any, side: str) -> _Offer:
    location = getattr(offer, "location", None)
    if not isinstance(location, str) or not normalize_location(location).strip():
        raise InvalidInput(side, "location is missing")

    check_in = getattr(offer, "check_in", None)
    check_out = getattr(offer, "check_out", None)
    if not isinstance(check_in, date) or not isinstance(check_out, date):
        raise InvalidInput(side, "check-in and check-out dates are required")
    check_in, check_out = as_utc(check_in), as_utc(check_out)
    if check_out <= check_in:
        raise InvalidInput(side, "check-out must be after check-in")

    raw_price = getattr(offer, "total_price", None)
    if raw_price is None or isinstance(raw_price, bool):
        raise InvalidInput(side, "total price is missing")
    try:
        price = Decimal(str(raw_price))
    except InvalidOperation:
        raise InvalidInput(side, f"total price is not a number: {raw_price!r}")
    if not price.is_finite() or price <= 0:
        raise InvalidInput(side, "total price must be positive")

    guests = getattr(offer, "guests", None)
    if guests is None:
        guests = 1
    if isinstance(guests, bool) or not isinstance(guests, int) or guests < 1:
        raise InvalidInput(side, f"guest count must be a positive integer, got {guests!r}")

    return _Offer(
        location=normalize_location(location),
        check_in=check_in,
        check_out=check_out,
        total_price=price,
        accommodation=normalize_accommodation(getattr(offer, "accommodation_type", None)),
        guests=guests,
    )


# =============================================================================
# Location
# =============================================================================


def _same_group(groups: Sequence[Sequence[str]], a: str, b: str) -> bool:
    return any(
        any(_mentions(a, k) for k in group) and any(_mentions(b, k) for k in group)
        for group in groups
    )


def _city_of(location: str) -> Optional[Tuple[float, float]]:
    for city, coords in CITY_COORDINATES.items():
        if _mentions(location, city):
            return coords
    return None


def haversine_km(a: Tuple[float, float], b: Tuple[float, float]) -> int:
    lat1, lng1 = map(math.radians, a)
    lat2, lng2 = map(math.radians, b)
    d_lat, d_lng = lat2 - lat1, lng2 - lng1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return round(EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h)))


def distance_adjustment(distance_km: int) -> int:
    if distance_km < 50:
        return 5
    if distance_km < 200:
        return 0
    if distance_km < 500:
        return -5
    if distance_km < 1000:
        return -10
    return -15


def score_location(source: str, target: str) -> Tuple[int, str]:
    if source == target:
        score, details = 100, "Exact location match - ideal for local swaps"
    elif _same_group(REGIONS, source, target):
        score, details = 80, "Same region/metropolitan area - minimal travel required"
    elif _same_group(COUNTRIES, source, target):
        score, details = 60, "Same country, different regions - domestic travel"
    elif _same_group(CONTINENTS, source, target):
        score, details = 40, "Same continent - international travel within region"
    else:
        score, details = 20, "Different continents - long-distance international travel"

    a, b = _city_of(source), _city_of(target)
    if a is not None and b is not None:
        distance = haversine_km(a, b)
        score = _clamp(score + distance_adjustment(distance))
        details += f" (est. {distance}km)"
    return score, details


# =============================================================================
# Dates
# =============================================================================


def stay_days(check_in: datetime, check_out: datetime) -> int:
    return math.ceil((check_out - check_in).total_seconds() / 86400)


def seasonal_bonus(a: datetime, b: datetime) -> int:
    s1, s2 = SEASONS[a.month], SEASONS[b.month]
    if s1 == s2:
        return 5
    gap = abs(SEASON_ORDER.index(s1) - SEASON_ORDER.index(s2))
    return 2 if gap in (1, 3) else 0


def score_dates(source: _Offer, target: _Offer) -> Tuple[int, str]:
    d1 = stay_days(source.check_in, source.check_out)
    d2 = stay_days(target.check_in, target.check_out)
    diff = abs(d1 - d2)

    if source.check_in < target.check_out and target.check_in < source.check_out:
        score, details = 10, "Date ranges overlap - requires careful coordination"
    elif diff == 0:
        score, details = 100, f"Perfect duration match ({d1} days)"
    elif diff <= 1:
        score, details = 95, f"Nearly identical durations ({d1} vs {d2} days)"
    elif diff <= 3:
        score, details = 80, f"Similar durations ({d1} vs {d2} days)"
    elif diff <= 7:
        score, details = 60, f"Moderately different durations ({d1} vs {d2} days)"
    else:
        score, details = 30, f"Very different durations ({d1} vs {d2} days)"

    bonus = seasonal_bonus(source.check_in, target.check_in)
    if bonus:
        score = min(100, score + bonus)
        details += f" +{bonus} seasonal match bonus"
    return score, details


# =============================================================================
# Value
# =============================================================================


def score_value(source: Decimal, target: Decimal) -> Tuple[int, str]:
    average = (source + target) / 2
    percent = abs(source - target) * 100 / average

    if percent <= 5:
        score, label = 100, "Excellent value match"
    elif percent <= 15:
        score, label = 85, "Good value match"
    elif percent <= 30:
        score, label = 70, "Fair value match"
    elif percent <= 50:
        score, label = 50, "Significant value difference"
    else:
        score, label = 25, "Large value difference"

    low, high = min(source, target), max(source, target)
    return score, f"{label} ({percent:.1f}% difference, {low} vs {high})"


# =============================================================================
# Accommodation
# =============================================================================


def luxury_adjustment(a: str, b: str) -> int:
    gap = abs(LUXURY_LEVELS.get(a, DEFAULT_LUXURY_LEVEL) - LUXURY_LEVELS.get(b, DEFAULT_LUXURY_LEVEL))
    if gap == 0:
        return 5
    if gap == 1:
        return 0
    if gap == 2:
        return -5
    return -10


def score_accommodation(source: str, target: str) -> Tuple[int, str]:
    shown_source, shown_target = source or "unspecified", target or "unspecified"
    if source and source == target:
        score, details = 100, f"Perfect match: {shown_source}"
    elif any(source in g and target in g for g in SIMILAR_TYPES):
        score, details = 75, f"Similar types: {shown_source} / {shown_target}"
    elif {source, target} in COMPATIBLE_TYPES:
        score, details = 50, f"Compatible types: {shown_source} / {shown_target}"
    else:
        score, details = 25, f"Different types: {shown_source} / {shown_target}"

    adjustment = luxury_adjustment(source, target)
    if adjustment:
        score = _clamp(score + adjustment)
        details += f" ({adjustment:+d} luxury adjustment)"
    return score, details


# =============================================================================
# Guests
# =============================================================================


def score_guests(source: int, target: int) -> Tuple[int, str]:
    diff = abs(source - target)
    most, least = max(source, target), min(source, target)

    if diff == 0:
        score, details = 100, f"Perfect match: {source} guests"
    elif diff == 1:
        score, details = 85, f"Very close: {source} vs {target} guests"
    elif diff <= 2:
        score, details = 70, f"Similar: {source} vs {target} guests"
    elif diff <= max(2, most * 0.25):
        score, details = 50, f"Moderate difference: {source} vs {target} guests"
    else:
        score, details = 25, f"Large difference: {source} vs {target} guests"

    utilization = least / most
    if utilization >= 0.8:
        score = min(100, score + 5)
        details += " (good capacity match)"
    elif utilization < 0.5:
        score = max(0, score - 10)
        details += " (capacity mismatch)"
    return score, details


# =============================================================================
# Scorer
# =============================================================================


class CompatibilityScorer:
    """Scores how well two offers match."""

    def score(self, source: OfferLike, target: OfferLike) -> CompatibilityResult:
        """
        Compare two offers.

        Args:
            source: Offer being evaluated from
            target: Candidate offer

        Returns:
            CompatibilityResult

        Raises:
            InvalidInput: If either offer lacks location, dates or price
        """
        a = _validate(source, "source")
        b = _validate(target, "target")

        raw = {
            "location": score_location(a.location, b.location),
            "date": score_dates(a, b),
            "value": score_value(a.total_price, b.total_price),
            "accommodation": score_accommodation(a.accommodation, b.accommodation),
            "guests": score_guests(a.guests, b.guests),
        }
        factors = {
            name: CompatibilityFactor(
                score=score,
                weight=WEIGHTS[name] / 100,
                status=status_for(score),
                details=details,
            )
            for name, (score, details) in raw.items()
        }

        overall = weighted_score({name: f.score for name, f in factors.items()})
        tier = tier_for(overall)
        result = CompatibilityResult(
            overall_score=overall,
            factors=factors,
            recommendations=self._recommendations(factors, tier),
            potential_issues=self._issues(factors),
            tier=tier,
        )
        logger.debug(f"Scored offers: overall={overall} tier={tier.value}")
        return result

    @staticmethod
    def _recommendations(
        factors: Dict[str, CompatibilityFactor], tier: RecommendationTier
    ) -> List[str]:
        lines = [
            RECOMMENDATIONS[(name, factors[name].status)]
            for name in FACTORS
            if (name, factors[name].status) in RECOMMENDATIONS
        ]
        if tier in TIER_RECOMMENDATIONS:
            lines.append(TIER_RECOMMENDATIONS[tier])
        return lines

    @staticmethod
    def _issues(factors: Dict[str, CompatibilityFactor]) -> List[str]:
        issues = [ISSUES[name] for name in FACTORS if factors[name].status == FactorStatus.POOR]
        low = sum(1 for f in factors.values() if f.score < LOW_SCORE)
        if low >= MULTIPLE_CONCERNS_COUNT:
            issues.append(MULTIPLE_CONCERNS_ISSUE)
        return issues
