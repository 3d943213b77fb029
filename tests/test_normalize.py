"""
Unit tests for app/services/normalize.py

- wallet validation and RPC address form
- position coercion, identity, ordering and totals
- trade coercion (side, seconds → ms)
- normalizing twice changes nothing
"""

import pytest

from app.core.errors import InvalidAddress
from app.models.portfolio import Position
from app.services.normalize import (
    INVALID_ADDRESS_MESSAGE,
    is_valid_address,
    normalize_address,
    normalize_position,
    normalize_positions,
    normalize_trade,
    normalize_trades,
    require_address,
    sort_positions,
    sum_positions_value,
)


class TestAddress:
    @pytest.mark.parametrize("value", [
        "0x1111111111111111111111111111111111111111",
        "0xAbCdEf0123456789abcdef0123456789ABCDEF01",
    ])
    def test_valid(self, value):
        assert is_valid_address(value) is True

    @pytest.mark.parametrize("value", [
        None,
        "",
        "0x",
        "1111111111111111111111111111111111111111",
        "0x111111111111111111111111111111111111111",
        "0x11111111111111111111111111111111111111111",
        "0x111111111111111111111111111111111111111g",
        " 0x1111111111111111111111111111111111111111",
        "0x1111111111111111111111111111111111111111\n",
        0x1111,
    ])
    def test_invalid(self, value):
        assert is_valid_address(value) is False

    def test_normalize_for_rpc(self):
        assert normalize_address("  0xABCdef  ") == "abcdef"
        assert normalize_address("ABC") == "abc"

    def test_require_address_trims_and_keeps_casing(self):
        assert require_address("  0xAbCdEf0123456789abcdef0123456789ABCDEF01\n") == (
            "0xAbCdEf0123456789abcdef0123456789ABCDEF01"
        )

    @pytest.mark.parametrize("value", [None, "", "0x123", 42])
    def test_require_address_rejects(self, value):
        with pytest.raises(InvalidAddress) as excinfo:
            require_address(value)
        assert excinfo.value.message == INVALID_ADDRESS_MESSAGE
        assert excinfo.value.kind == "invalid_address"


class TestNormalizePosition:
    def test_coerces_fields(self):
        position = normalize_position({
            "asset": "a1",
            "title": "Will X happen?",
            "currentValue": "100.50",
            "size": 10,
            "avgPrice": "0.4",
            "cashPnl": "NaN",
            "percentPnl": None,
            "outcome": "Yes",
            "endDate": "2025-01-01",
            "unknownField": {"nested": True},
        })
        assert position.id == "a1"
        assert position.title == "Will X happen?"
        assert position.current_value == 100.5
        assert position.size == 10.0
        assert position.avg_price == 0.4
        assert position.cash_pnl is None
        assert position.percent_pnl is None
        assert position.outcome == "Yes"
        assert position.event_slug == ""
        assert position.icon == ""

    def test_serializes_camel_case(self):
        stored = normalize_position({"asset": "a1", "currentValue": 3, "eventSlug": "e"}).to_store()
        assert stored["currentValue"] == 3.0
        assert stored["eventSlug"] == "e"
        assert "current_value" not in stored

    def test_title_fallbacks(self):
        assert normalize_position({"slug": "some-market"}).title == "some-market"
        assert normalize_position({}).title == "Unnamed market"

    def test_identity_preference(self):
        assert normalize_position({"asset": "a", "slug": "s", "outcome": "Yes"}).id == "a"
        assert normalize_position({"slug": "s", "outcome": "Yes", "conditionId": "c"}).id == "s-Yes"
        assert normalize_position({"slug": "s", "conditionId": "c"}).id == "c"
        assert normalize_position({"title": "T"}).id == "T"

    def test_fallback_identity_is_stable(self):
        first = normalize_position({"currentValue": 5, "size": 2})
        second = normalize_position({"currentValue": 5, "size": 2})
        other = normalize_position({"currentValue": 6, "size": 2})
        assert first.id.startswith("pos-")
        assert first.id == second.id
        assert first.id != other.id

    @pytest.mark.parametrize("payload", [None, "junk", 42, ["a"]])
    def test_non_object_records(self, payload):
        position = normalize_position(payload)
        assert position.title == "Unnamed market"
        assert position.current_value is None

    @pytest.mark.parametrize("payload", [
        {"asset": "a1", "title": "Will X happen?", "currentValue": "100.50", "outcome": "Yes"},
        {"slug": "s", "outcome": "No", "size": "3", "curPrice": "0.2"},
        {"conditionId": "c", "currentValue": "bad"},
        {"currentValue": 1.5},
        {},
    ])
    def test_idempotent(self, payload):
        once = normalize_position(payload)
        assert normalize_position(once) == once
        assert normalize_position(once.to_store()) == once


class TestPositionsTotals:
    def test_sorted_descending_with_missing_as_zero(self):
        positions = normalize_positions([
            {"asset": "small", "currentValue": 1},
            {"asset": "none", "currentValue": None},
            {"asset": "big", "currentValue": "50"},
            {"asset": "negative", "currentValue": -2},
        ])
        assert [p.id for p in positions] == ["big", "small", "none", "negative"]

    def test_sum_treats_missing_as_zero(self):
        positions = normalize_positions([
            {"asset": "a", "currentValue": "100.50"},
            {"asset": "b", "currentValue": "garbage"},
            {"asset": "c"},
            {"asset": "d", "currentValue": 0.25},
        ])
        assert sum_positions_value(positions) == pytest.approx(100.75)

    def test_empty(self):
        assert sum_positions_value([]) == 0
        assert sort_positions([]) == []

    def test_sort_accepts_models(self):
        positions = [Position(id="a", current_value=1), Position(id="b", current_value=2)]
        assert [p.id for p in sort_positions(positions)] == ["b", "a"]


class TestNormalizeTrade:
    def test_coerces_fields(self):
        trade = normalize_trade({
            "transactionHash": "0xabc",
            "asset": "a1",
            "side": "buy",
            "size": "10",
            "price": 0.55,
            "timestamp": 1700000000,
            "title": "Market",
            "slug": "market",
            "outcome": "Yes",
        })
        assert trade.id == "0xabc"
        assert trade.side == "BUY"
        assert trade.size == 10.0
        assert trade.price == 0.55
        assert trade.timestamp == 1700000000000
        assert trade.is_closed is False

    def test_identity_fallbacks(self):
        assert normalize_trade({"asset": "a1"}).id == "a1"
        fallback = normalize_trade({"size": 1})
        assert fallback.id.startswith("trade-")
        assert fallback.id == normalize_trade({"size": 1}).id

    def test_missing_timestamp(self):
        assert normalize_trade({"transactionHash": "0x1"}).timestamp is None

    def test_idempotent(self):
        once = normalize_trade({"transactionHash": "0x1", "side": "sell", "timestamp": "1700000000", "closed": True})
        again = normalize_trade(once.to_store())
        assert again == once
        assert again.timestamp == 1700000000000
        assert again.is_closed is True

    def test_trades_newest_first(self):
        trades = normalize_trades([
            {"transactionHash": "old", "timestamp": 10},
            {"transactionHash": "none"},
            {"transactionHash": "new", "timestamp": 20},
        ])
        assert [t.id for t in trades] == ["new", "old", "none"]
