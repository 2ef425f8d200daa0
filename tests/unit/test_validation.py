"""
Unit tests for input validation.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from swapmatch.core.auction.auction import AuctionSettings
from swapmatch.utils.validation import (
    MAX_AUTO_SELECT_HOURS,
    validate_amount,
    validate_auction_settings,
    validate_auction_timing,
    validate_aware_datetime,
    validate_identifier,
)


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
WEEK = timedelta(days=7)


class TestIdentifier:

    def test_uuid(self):
        assert validate_identifier("9a3e1c52-0000-4000-8000-000000000001") == (True, "")

    @pytest.mark.parametrize("value", ["", None, 42, "not-a-uuid", "x" * 100])
    def test_rejected(self, value):
        valid, error = validate_identifier(value, "swap_id")
        assert not valid
        assert "swap_id" in error


class TestAmount:

    @pytest.mark.parametrize("value", [1, "0.01", Decimal("250.00")])
    def test_positive(self, value):
        assert validate_amount(value)[0]

    @pytest.mark.parametrize("value", [0, -5, "abc", "NaN", "Infinity", True, 1.5, None])
    def test_rejected(self, value):
        assert not validate_amount(value)[0]


class TestDatetime:

    def test_naive_rejected(self):
        valid, error = validate_aware_datetime(datetime(2026, 1, 1), "end_date")
        assert not valid
        assert "timezone" in error

    def test_not_a_datetime(self):
        assert not validate_aware_datetime("2026-01-01", "end_date")[0]


class TestAuctionSettings:

    def settings(self, **overrides):
        fields = dict(end_date=NOW + timedelta(days=3), allow_cash_proposals=True)
        fields.update(overrides)
        return AuctionSettings(**fields)

    def test_valid(self):
        assert validate_auction_settings(self.settings(), NOW) == (True, "")

    def test_end_in_past(self):
        valid, error = validate_auction_settings(self.settings(end_date=NOW), NOW)
        assert not valid
        assert "future" in error

    def test_no_types(self):
        settings = self.settings(allow_booking_proposals=False, allow_cash_proposals=False)
        assert not validate_auction_settings(settings, NOW)[0]

    def test_auto_select_bounds(self):
        assert not validate_auction_settings(self.settings(auto_select_after_hours=0), NOW)[0]
        assert not validate_auction_settings(
            self.settings(auto_select_after_hours=MAX_AUTO_SELECT_HOURS + 1), NOW
        )[0]
        assert validate_auction_settings(self.settings(auto_select_after_hours=24), NOW)[0]

    def test_auto_select_minimum_configurable(self):
        settings = self.settings(auto_select_after_hours=2)
        assert not validate_auction_settings(settings, NOW, min_auto_select_hours=6)[0]

    def test_minimum_cash_positive(self):
        assert not validate_auction_settings(self.settings(minimum_cash_offer=Decimal("0")), NOW)[0]


class TestAuctionTiming:

    def test_valid(self):
        event = NOW + timedelta(days=30)
        assert validate_auction_timing(event - WEEK, event, NOW, WEEK) == (True, "")

    def test_event_too_soon(self):
        event = NOW + timedelta(days=6)
        valid, error = validate_auction_timing(NOW + timedelta(hours=1), event, NOW, WEEK)
        assert not valid
        assert "7 days" in error

    def test_end_after_latest(self):
        event = NOW + timedelta(days=30)
        valid, error = validate_auction_timing(event - timedelta(days=6), event, NOW, WEEK)
        assert not valid
        assert "must end by" in error
