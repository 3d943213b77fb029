"""
Portfolio endpoints — data served from the shared state store (written by the aggregator).

GET /portfolio            - current snapshot: totals, positions, errors, timestamps
PUT /portfolio/address    - save the tracked wallet and refresh it
GET /portfolio/history    - trade history grouped by market, paged
GET /portfolio/stream     - server-sent events, one per store change
"""

import asyncio
import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.api.routes.messages import MessageResponse
from app.core.errors import InvalidAddress
from app.core.store import SESSION, SYNC, StateStore, StorageChange, get_store
from app.models.portfolio import Position, Trade, TradeGroup
from app.services.format import (
    ensure_positive_integer,
    format_address,
    format_currency,
    format_date,
    format_number,
    format_percent,
    format_side,
    format_signed_currency,
    format_timestamp,
    trend_class,
)
from app.services.history import count_trades, group_trades, visible_groups
from app.services.normalize import require_address
from app.workers.refresh import RefreshCoordinator, get_coordinator

logger = logging.getLogger(__name__)

router = APIRouter()

KEEPALIVE_SECONDS = 15
STREAM_QUEUE_SIZE = 100
HISTORY_PAGE_SIZE = 5


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class PositionView(Position):
    """A stored position plus the strings the positions list renders."""

    value_display: str = ""
    pnl_display: str = ""
    percent_pnl_display: str = ""
    trend: str = "neutral"
    size_display: str = ""
    price_display: str = ""
    end_date_display: str = ""

    @classmethod
    def from_position(cls, position: Position) -> "PositionView":
        prices = []
        if position.avg_price is not None:
            prices.append(f"@ {format_number(position.avg_price, max_digits=3)}")
        if position.cur_price is not None:
            prices.append(f"→ {format_number(position.cur_price, max_digits=3)}")
        return cls(
            **position.model_dump(include=set(Position.model_fields)),
            value_display=format_currency(position.current_value),
            pnl_display=format_signed_currency(position.cash_pnl),
            percent_pnl_display=format_percent(position.percent_pnl),
            trend=trend_class(position.cash_pnl),
            size_display=f"Size {format_number(position.size)}" if position.size is not None else "",
            price_display=" ".join(prices),
            end_date_display=format_date(position.end_date),
        )


class PortfolioStateResponse(BaseModel):
    """Every field is independently nullable: nothing is guaranteed to have been written yet."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    address: Optional[str] = None
    address_display: Optional[str] = None
    open_in_popup: Optional[bool] = None

    positions_value: Optional[float] = None
    cash_value: Optional[float] = None
    total_value: Optional[float] = None
    values_updated_at: Optional[int] = None
    values_updated_display: Optional[str] = None
    values_error: Optional[str] = None
    badge_text: Optional[str] = None
    badge_tooltip: Optional[str] = None

    positions: Optional[List[PositionView]] = None
    positions_updated_at: Optional[int] = None
    positions_error: Optional[str] = None

    @classmethod
    def from_state(cls, state: dict) -> "PortfolioStateResponse":
        response = cls.model_validate(state)
        if response.address:
            response.address_display = format_address(response.address)
        if response.values_updated_at:
            response.values_updated_display = format_timestamp(response.values_updated_at)
        if response.positions is not None:
            response.positions = [PositionView.from_position(p) for p in response.positions]
        return response


class TradeView(Trade):
    side_label: str = ""
    amount_display: str = ""
    time_display: str = ""

    @classmethod
    def from_trade(cls, trade: Trade) -> "TradeView":
        return cls(
            **trade.model_dump(include=set(Trade.model_fields)),
            side_label=format_side(trade.side),
            amount_display=f"{format_number(trade.size)} @ {format_number(trade.price, max_digits=3)}",
            time_display=format_timestamp(trade.timestamp),
        )


class TradeGroupView(TradeGroup):
    trades: List[TradeView] = Field(default_factory=list)
    latest_display: str = ""

    @classmethod
    def from_group(cls, group: TradeGroup) -> "TradeGroupView":
        return cls(
            **group.model_dump(include=set(TradeGroup.model_fields) - {"trades"}),
            trades=[TradeView.from_trade(t) for t in group.trades],
            latest_display=format_timestamp(group.latest_timestamp),
        )


class HistoryResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    groups: List[TradeGroupView]
    open_only: bool
    page: int
    page_size: int
    total_pages: int
    total_markets: int
    total_trades: int
    visible_trades: int
    hidden_trades: int
    updated_at: Optional[int] = None
    error: Optional[str] = None


class AddressRequest(BaseModel):
    address: str


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("/", response_model=PortfolioStateResponse)
async def get_portfolio(store: StateStore = Depends(get_store)) -> PortfolioStateResponse:
    """Merged view of the sync and session areas."""
    state = await store.get_all()
    merged = {**state[SYNC], **state[SESSION]}
    merged.pop("trades", None)
    return PortfolioStateResponse.from_state(merged)


@router.put("/address", response_model=MessageResponse, response_model_exclude_none=True)
async def save_address(
    body: AddressRequest,
    store: StateStore = Depends(get_store),
    coordinator: RefreshCoordinator = Depends(get_coordinator),
) -> MessageResponse:
    """
    Store the wallet to track, then wait for its refresh.
    The stored form keeps the user's casing.
    """
    try:
        address = require_address(body.address)
    except InvalidAddress as exc:
        raise HTTPException(status_code=422, detail=exc.message) from exc

    await store.set(SYNC, {"address": address})
    result = await coordinator.refresh(address, join_in_flight=True)
    return MessageResponse(**result.to_message())


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    open_only: bool = Query(default=True, description="Only markets where the wallet still holds a position"),
    page: Optional[str] = Query(default=None, description="1-based page of market groups"),
    page_size: Optional[str] = Query(default=None, description=f"Groups per page (default {HISTORY_PAGE_SIZE})"),
    store: StateStore = Depends(get_store),
) -> HistoryResponse:
    """
    Trade history grouped by market, newest market first.
    Malformed or non-positive paging values fall back to the defaults; a page past
    the end is clamped to the last page.
    """
    state = await store.get(SESSION, ["trades", "tradesUpdatedAt", "tradesError"])
    trades = [Trade.model_validate(t) for t in state.get("trades") or []]

    all_groups = group_trades(trades)
    groups = visible_groups(all_groups, open_only=open_only)
    visible = count_trades(groups)

    size = ensure_positive_integer(page_size, fallback=HISTORY_PAGE_SIZE)
    total_pages = max(1, -(-len(groups) // size))
    current = min(ensure_positive_integer(page, fallback=1), total_pages)
    start = (current - 1) * size

    return HistoryResponse(
        groups=[TradeGroupView.from_group(g) for g in groups[start:start + size]],
        open_only=open_only,
        page=current,
        page_size=size,
        total_pages=total_pages,
        total_markets=len(all_groups),
        total_trades=len(trades),
        visible_trades=visible,
        hidden_trades=len(trades) - visible,
        updated_at=state.get("tradesUpdatedAt"),
        error=state.get("tradesError"),
    )


@router.get("/stream")
async def stream_changes(request: Request, store: StateStore = Depends(get_store)) -> StreamingResponse:
    """
    Server-sent events for UI surfaces. Each event is one StorageChange:
        {"area": "sync" | "session", "changes": {key: {"oldValue", "newValue"}}}
    The subscription lives exactly as long as the client connection.
    """
    queue: asyncio.Queue = asyncio.Queue(maxsize=STREAM_QUEUE_SIZE)

    def on_change(event: StorageChange) -> None:
        try:
            queue.put_nowait(event.to_dict())
        except asyncio.QueueFull:
            logger.warning("[portfolio.stream] Client is not keeping up, dropping %s change", event.area)

    async def events():
        with store.subscribe(on_change):
            while not await request.is_disconnected():
                try:
                    payload = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"data: {json.dumps(payload)}\n\n"

    return StreamingResponse(events(), media_type="text/event-stream")
