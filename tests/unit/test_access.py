"""Tests for swap access rules."""

import pytest

from swapmatch.core.compatibility.access import SwapAccessGuard
from swapmatch.core.errors import ErrorKind
from swapmatch.core.swap.offer import SwapOffer, SwapStatus


@pytest.fixture
def guard():
    return SwapAccessGuard()


def swap(status=SwapStatus.AVAILABLE, proposer_id=""):
    return SwapOffer(source_booking_id="b", owner_id="owner", status=status, proposer_id=proposer_id)


class TestView:

    def test_owner_always(self, guard):
        for status in SwapStatus:
            assert guard.can_view(swap(status), "owner")

    def test_stranger_only_when_pending(self, guard):
        assert guard.can_view(swap(SwapStatus.PENDING), "stranger")
        assert not guard.can_view(swap(SwapStatus.AVAILABLE), "stranger")
        assert not guard.can_view(swap(SwapStatus.ACCEPTED), "stranger")

    def test_counterpart(self, guard):
        accepted = swap(SwapStatus.ACCEPTED, proposer_id="alice")
        assert guard.can_view(accepted, "alice")

    def test_anonymous_sees_only_pending(self, guard):
        assert guard.can_view(swap(SwapStatus.PENDING), None)
        assert not guard.can_view(swap(SwapStatus.AVAILABLE), None)


class TestMutate:

    def test_owner_and_counterpart(self, guard):
        accepted = swap(SwapStatus.ACCEPTED, proposer_id="alice")
        assert guard.can_mutate(accepted, "owner")
        assert guard.can_mutate(accepted, "alice")

    def test_others_never(self, guard):
        assert not guard.can_mutate(swap(SwapStatus.PENDING), "stranger")
        assert not guard.can_mutate(swap(SwapStatus.PENDING), None)


class TestAuthorizeCompatibility:

    def test_allowed(self, guard):
        assert guard.authorize_compatibility(swap(), swap(SwapStatus.PENDING), "owner") is None

    def test_names_denied_side(self, guard):
        hidden = swap(SwapStatus.AVAILABLE)
        error = guard.authorize_compatibility(swap(SwapStatus.PENDING), hidden, "stranger")
        assert error.code == "ACCESS_DENIED"
        assert error.kind == ErrorKind.FORBIDDEN
        assert error.details == {"side": "target", "swap_id": hidden.id}

    def test_source_checked_first(self, guard):
        error = guard.authorize_compatibility(swap(), swap(), "stranger")
        assert error.details["side"] == "source"
