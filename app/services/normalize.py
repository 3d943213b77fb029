"""
Normalization boundary: raw Data API records → strict Position / Trade records.

Rules:
    - numbers become finite floats or None (never NaN / Infinity)
    - strings fall back to "" (title falls back to slug, then "Unnamed market")
    - identity is derived deterministically, so the same payload gets the same id
      on every refresh
    - normalizing an already-normalized record returns an equal record
"""

import hashlib
import json
from typing import Any, Iterable, Optional

from app.core.config import ADDRESS_REGEX
from app.core.errors import InvalidAddress
from app.models.polymarket import RawPosition, RawTrade
from app.models.portfolio import Position, Trade
from app.services.format import parse_number
from app.services.history import is_trade_closed

UNNAMED_MARKET = "Unnamed market"
INVALID_ADDRESS_MESSAGE = "No valid wallet address set."


def is_valid_address(value: Any) -> bool:
    return isinstance(value, str) and ADDRESS_REGEX.fullmatch(value) is not None


def require_address(value: Any) -> str:
    """Trimmed wallet in the user's casing; raises InvalidAddress when it does not validate."""
    address = value.strip() if isinstance(value, str) else value
    if not is_valid_address(address):
        raise InvalidAddress(INVALID_ADDRESS_MESSAGE)
    return address


def normalize_address(address: str) -> str:
    """Lowercase hex without the 0x prefix, as used in eth_call data."""
    text = address.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    return text


def _text(value: Any, default: str = "") -> str:
    if value is None or value == "" or value is False:
        return default
    return str(value)


def _fingerprint(prefix: str, record: Any) -> str:
    """Stable id for records without any identifying field."""
    payload = json.dumps(record.model_dump(mode="json"), sort_keys=True, default=str)
    return f"{prefix}-{hashlib.sha1(payload.encode()).hexdigest()[:16]}"


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------

def _position_id(raw: RawPosition) -> str:
    if raw.id:
        return str(raw.id)
    if raw.asset:
        return str(raw.asset)
    if raw.slug and raw.outcome:
        return f"{raw.slug}-{raw.outcome}"
    if raw.condition_id:
        return str(raw.condition_id)
    if raw.title:
        return str(raw.title)
    return _fingerprint("pos", raw)


def normalize_position(payload: Any) -> Position:
    raw = RawPosition.from_payload(payload)
    return Position(
        id=_position_id(raw),
        title=_text(raw.title) or _text(raw.slug) or UNNAMED_MARKET,
        outcome=_text(raw.outcome),
        slug=_text(raw.slug),
        event_slug=_text(raw.event_slug),
        icon=_text(raw.icon),
        end_date=_text(raw.end_date),
        asset=_text(raw.asset),
        condition_id=_text(raw.condition_id),
        size=parse_number(raw.size),
        avg_price=parse_number(raw.avg_price),
        cur_price=parse_number(raw.cur_price),
        initial_value=parse_number(raw.initial_value),
        current_value=parse_number(raw.current_value),
        cash_pnl=parse_number(raw.cash_pnl),
        percent_pnl=parse_number(raw.percent_pnl),
        realized_pnl=parse_number(raw.realized_pnl),
    )


def sort_positions(positions: Iterable[Position]) -> list[Position]:
    """Largest current value first; missing values sort as 0."""
    return sorted(positions, key=lambda p: p.current_value or 0.0, reverse=True)


def sum_positions_value(positions: Iterable[Position]) -> float:
    return sum((p.current_value or 0.0) for p in positions)


def normalize_positions(payloads: Iterable[Any]) -> list[Position]:
    return sort_positions(normalize_position(p) for p in payloads)


# ---------------------------------------------------------------------------
# Trades
# ---------------------------------------------------------------------------

def _trade_id(raw: RawTrade) -> str:
    if raw.id:
        return str(raw.id)
    if raw.transaction_hash:
        return str(raw.transaction_hash)
    if raw.asset:
        return str(raw.asset)
    return _fingerprint("trade", raw)


def _timestamp_ms(raw: RawTrade) -> Optional[int]:
    seconds = parse_number(raw.timestamp)
    if seconds is None:
        return None
    if raw.already_normalized:
        return int(seconds)
    return int(round(seconds * 1000))


def normalize_trade(payload: Any) -> Trade:
    raw = RawTrade.from_payload(payload)
    return Trade(
        id=_trade_id(raw),
        title=_text(raw.title) or _text(raw.slug) or UNNAMED_MARKET,
        outcome=_text(raw.outcome),
        slug=_text(raw.slug),
        event_slug=_text(raw.event_slug),
        icon=_text(raw.icon),
        side=_text(raw.side).upper(),
        size=parse_number(raw.size),
        price=parse_number(raw.price),
        timestamp=_timestamp_ms(raw),
        is_closed=is_trade_closed(raw),
    )


def normalize_trades(payloads: Iterable[Any]) -> list[Trade]:
    """Newest first; trades without a timestamp go last."""
    trades = [normalize_trade(p) for p in payloads]
    return sorted(trades, key=lambda t: t.timestamp or 0, reverse=True)
