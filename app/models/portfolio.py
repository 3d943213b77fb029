"""
Internal portfolio records.

These are the strict shapes that get stored and served. Raw Data API payloads are
converted into them by app/services/normalize.py; nothing loosely typed gets past that
boundary. Serialized with camelCase aliases (model_dump(by_alias=True)) so the stored
JSON matches what the UI surfaces read.
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_store(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------

class Position(_CamelModel):
    """One open market stake. Numbers are finite floats or None, never NaN/Infinity."""

    id: str
    title: str = "Unnamed market"
    outcome: str = ""
    slug: str = ""
    event_slug: str = ""
    icon: str = ""
    end_date: str = ""
    asset: str = ""
    condition_id: str = ""

    size: Optional[float] = None
    avg_price: Optional[float] = None
    cur_price: Optional[float] = None
    initial_value: Optional[float] = None
    current_value: Optional[float] = None
    cash_pnl: Optional[float] = None
    percent_pnl: Optional[float] = None
    realized_pnl: Optional[float] = None


# ---------------------------------------------------------------------------
# Trade history
# ---------------------------------------------------------------------------

class Trade(_CamelModel):
    id: str
    title: str = "Unnamed market"
    outcome: str = ""
    slug: str = ""
    event_slug: str = ""
    icon: str = ""
    side: str = ""                         # "BUY" | "SELL"
    size: Optional[float] = None
    price: Optional[float] = None
    timestamp: Optional[int] = None        # epoch ms
    is_closed: bool = False


class TradeGroup(_CamelModel):
    """Trades of one market, newest first."""

    key: str
    title: str = "Unnamed market"
    slug: str = ""
    event_slug: str = ""
    icon: str = ""
    latest_timestamp: Optional[int] = None
    trades: List[Trade] = Field(default_factory=list)
    closed: bool = True
    has_active_position: bool = False


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

RefreshStatus = Literal["ok", "partial_failure", "total_failure", "invalid_address", "superseded"]


class PortfolioSnapshot(_CamelModel):
    """
    One consistent bundle produced by one aggregator run.

    positions_value is always the local sum over `positions`; it is None only when
    the positions fetch failed.
    """

    positions_value: Optional[float] = None
    cash_value: Optional[float] = None
    positions: List[Position] = Field(default_factory=list)
    trades: Optional[List[Trade]] = None
    updated_at: int
    error: Optional[str] = None

    @computed_field
    @property
    def total_value(self) -> Optional[float]:
        if self.positions_value is None and self.cash_value is None:
            return None
        return (self.positions_value or 0.0) + (self.cash_value or 0.0)


class RefreshResult(BaseModel):
    """Outcome handed back to whoever triggered the refresh."""

    success: bool
    status: RefreshStatus
    error: Optional[str] = None
    snapshot: Optional[PortfolioSnapshot] = None

    def to_message(self) -> dict:
        """Response shape of the {type: "refresh"} message contract."""
        message: dict = {"success": self.success}
        if self.error:
            message["error"] = self.error
        return message
