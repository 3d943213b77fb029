"""
Pydantic models for Polymarket Data API response shapes.

Usage:
    - The fetchers return raw JSON lists; normalization parses each element into
      RawPosition / RawTrade and converts it straight into the strict Position / Trade
      records in app/models/portfolio.py. Raw models never leave app/services/normalize.py.
    - Use model_config extra='ignore' so undocumented fields never cause crashes.
    - Every field is Any: the Data API sends numbers as numbers or strings, and
      occasionally null. Coercion happens in normalization, not here.
    - Data API keys are camelCase; fields are snake_case with camelCase aliases.

Data API: https://data-api.polymarket.com
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Status normalization
# ---------------------------------------------------------------------------

POLYMARKET_STATUS_MAP: dict[str, str] = {
    "open": "active",
    "active": "active",
    "live": "active",
    "closed": "closed",
    "ended": "closed",
    "archived": "closed",
    "resolved": "resolved",
    "settled": "resolved",
    "finalized": "resolved",
    "redeemed": "resolved",
    "paused": "suspended",
    "cancelled": "canceled",
    "canceled": "canceled",
}

CLOSED_STATUSES = frozenset({"closed", "resolved", "canceled"})


def map_polymarket_status(raw: str | None) -> str:
    if not raw:
        return "active"
    return POLYMARKET_STATUS_MAP.get(raw.strip().lower(), "active")


class _RawRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)

    # Present only when the record was already normalized once
    id: Any = None

    @classmethod
    def from_payload(cls, payload: Any):
        """Parse one list element; anything that is not a JSON object becomes an empty record."""
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(by_alias=True)
        if not isinstance(payload, dict):
            payload = {}
        return cls.model_validate(payload)


# ---------------------------------------------------------------------------
# Positions (GET /positions?user=)
# ---------------------------------------------------------------------------

class RawPosition(_RawRecord):
    """One element of the /positions response."""

    proxy_wallet: Any = None
    asset: Any = None                      # ERC-1155 token ID, preferred stable identity
    condition_id: Any = None
    title: Any = None
    slug: Any = None
    event_slug: Any = None
    icon: Any = None
    outcome: Any = None
    end_date: Any = None

    size: Any = None
    avg_price: Any = None
    cur_price: Any = None
    initial_value: Any = None
    current_value: Any = None
    cash_pnl: Any = None
    percent_pnl: Any = None
    realized_pnl: Any = None


# ---------------------------------------------------------------------------
# Trades (GET /trades?user=)
# ---------------------------------------------------------------------------

class RawTrade(_RawRecord):
    """
    One element of the /trades response.

    The market status fields are not always present; whichever the payload
    carries feeds the closed-market heuristic in app/services/history.py.
    """

    transaction_hash: Any = None
    asset: Any = None
    condition_id: Any = None
    title: Any = None
    slug: Any = None
    event_slug: Any = None
    icon: Any = None
    outcome: Any = None
    side: Any = None
    size: Any = None
    price: Any = None
    timestamp: Any = None                  # seconds on the wire, ms once normalized

    # Market status hints
    is_closed: Any = None
    closed: Any = None
    market_closed: Any = None
    resolved: Any = None
    archived: Any = None
    active: Any = None
    status: Any = None
    market_status: Any = None
    state: Any = None

    @property
    def already_normalized(self) -> bool:
        return self.id is not None and self.is_closed is not None
