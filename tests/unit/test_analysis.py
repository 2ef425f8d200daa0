"""
Tests for the compatibility analysis service.

Covers the request checks that run before scoring and the mapping of
collaborator and data problems onto errors.
"""

import uuid
from datetime import timedelta

import pytest

from conftest import ALICE, BOB, EVENT, OWNER, make_booking
from swapmatch.core.compatibility.scorer import (
    CompatibilityFactor, CompatibilityResult, CompatibilityScorer, FactorStatus, RecommendationTier
)
from swapmatch.core.errors import ErrorKind


@pytest.fixture
def alice_swap(engine, directory):
    """Alice's swap, published."""
    booking = directory.add(make_booking(
        ALICE, location="Paris, France",
        check_in=EVENT + timedelta(days=60), check_out=EVENT + timedelta(days=65),
    ))
    swap = engine.swaps.create_swap(ALICE, {"source_booking_id": booking.id}).value
    return engine.swaps.publish_swap(swap.id, ALICE).value


class TestRequestChecks:

    def test_requires_authentication(self, engine, listed_swap, alice_swap):
        result = engine.analysis.analyze(listed_swap.id, alice_swap.id, None)
        assert result.kind == ErrorKind.NOT_AUTHENTICATED

    def test_invalid_id(self, engine, listed_swap):
        result = engine.analysis.analyze(listed_swap.id, "not-a-uuid", OWNER)
        assert result.code == "INVALID_INPUT"
        assert result.error.details["field"] == "target_swap_id"

    def test_same_swap(self, engine, listed_swap):
        result = engine.analysis.analyze(listed_swap.id, listed_swap.id, OWNER)
        assert result.code == "INVALID_INPUT"

    def test_missing_swap_names_side(self, engine, listed_swap):
        result = engine.analysis.analyze(str(uuid.uuid4()), listed_swap.id, OWNER)
        assert result.code == "SWAP_NOT_FOUND"
        assert result.error.details["side"] == "source"

    def test_unpublished_target_is_hidden(self, engine, directory, listed_swap):
        booking = directory.add(make_booking(BOB))
        private = engine.swaps.create_swap(BOB, {"source_booking_id": booking.id}).value

        result = engine.analysis.analyze(listed_swap.id, private.id, OWNER)
        assert result.code == "ACCESS_DENIED"
        assert result.kind == ErrorKind.FORBIDDEN
        assert result.error.details["side"] == "target"


class TestAnalysis:

    def test_scores_both_bookings(self, engine, listed_swap, alice_swap):
        result = engine.analysis.analyze(listed_swap.id, alice_swap.id, OWNER)
        assert result.ok, result.error
        report = result.value
        assert 0 <= report.overall_score <= 100
        assert report.factors["dates"].score == 100
        assert report.factors["value"].score == 100
        body = report.to_dict()
        assert set(body) == {"overall_score", "factors", "recommendations", "potential_issues", "recommendation"}

    def test_booking_service_down(self, engine, directory, listed_swap, alice_swap):
        directory.fail = True
        result = engine.analysis.analyze(listed_swap.id, alice_swap.id, OWNER)
        assert result.code == "BOOKING_SERVICE_FAILED"
        assert result.kind == ErrorKind.INTEGRATION

    def test_malformed_booking(self, engine, directory, listed_swap):
        booking = directory.add(make_booking(BOB, location=None))
        swap = engine.swaps.create_swap(BOB, {"source_booking_id": booking.id}).value
        engine.swaps.publish_swap(swap.id, BOB)

        result = engine.analysis.analyze(listed_swap.id, swap.id, OWNER)
        assert result.code == "MALFORMED_BOOKING_DATA"
        assert result.error.details["side"] == "target"

    def test_malformed_scorer_output(self, engine, listed_swap, alice_swap, monkeypatch):
        factor = CompatibilityFactor(score=50, weight=1.0, status=FactorStatus.FAIR, details="")
        bogus = CompatibilityResult(
            overall_score=50, factors={"location": factor}, recommendations=[],
            potential_issues=[], tier=RecommendationTier.POSSIBLE,
        )
        monkeypatch.setattr(CompatibilityScorer, "score", lambda self, a, b: bogus)

        result = engine.analysis.analyze(listed_swap.id, alice_swap.id, OWNER)
        assert result.code == "SCORING_FAILED"
