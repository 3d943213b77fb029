"""
Trade history: closed-market detection and per-market grouping.

is_trade_closed() is best-effort. The Data API does not carry a single reliable
market-status field on trades, so several loosely overlapping hints are checked.
Keep every heuristic in that one function so it can be revised without touching
the aggregator.
"""

from typing import Any, Iterable

from app.models.polymarket import CLOSED_STATUSES, RawTrade, map_polymarket_status
from app.models.portfolio import Trade, TradeGroup

# Net size below this is treated as a fully exited outcome
POSITION_TOLERANCE = 1e-6

DEFAULT_OUTCOME_KEY = "__default__"

_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}


def _flag(value: Any) -> bool | None:
    """Interpret a loosely typed boolean; None when the value says nothing."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    return None


def is_trade_closed(raw: RawTrade) -> bool:
    # An already-normalized trade keeps its verdict
    if isinstance(raw.is_closed, bool):
        return raw.is_closed
    explicit = _flag(raw.is_closed)
    if explicit is not None:
        return explicit

    for hint in (raw.closed, raw.market_closed, raw.resolved, raw.archived):
        if _flag(hint) is True:
            return True

    if _flag(raw.active) is False:
        return True

    for status in (raw.status, raw.market_status, raw.state):
        if isinstance(status, str) and map_polymarket_status(status) in CLOSED_STATUSES:
            return True

    return False


def group_key(trade: Trade) -> str:
    return trade.slug or trade.event_slug or trade.title or trade.id


def group_trades(trades: Iterable[Trade]) -> list[TradeGroup]:
    """
    Group trades by market, newest market first.

    Within a market the signed size per outcome is accumulated (BUY adds, SELL
    subtracts); the group has an active position when any outcome nets beyond
    POSITION_TOLERANCE.
    """
    groups: dict[str, TradeGroup] = {}
    net_by_group: dict[str, dict[str, float]] = {}

    for trade in trades:
        key = group_key(trade)
        group = groups.get(key)
        if group is None:
            group = TradeGroup(
                key=key,
                title=trade.title or "Unnamed market",
                slug=trade.slug,
                event_slug=trade.event_slug,
                icon=trade.icon,
                latest_timestamp=trade.timestamp,
            )
            groups[key] = group
            net_by_group[key] = {}

        if not group.icon and trade.icon:
            group.icon = trade.icon

        if trade.timestamp is not None and (
            group.latest_timestamp is None or trade.timestamp > group.latest_timestamp
        ):
            group.latest_timestamp = trade.timestamp

        group.closed = group.closed and trade.is_closed

        if trade.size:
            outcome = trade.outcome or DEFAULT_OUTCOME_KEY
            signed = -trade.size if trade.side == "SELL" else trade.size
            net = net_by_group[key]
            net[outcome] = net.get(outcome, 0.0) + signed

        group.trades.append(trade)

    for key, group in groups.items():
        group.trades.sort(key=lambda t: t.timestamp or 0, reverse=True)
        group.has_active_position = any(
            abs(net) > POSITION_TOLERANCE for net in net_by_group[key].values()
        )

    return sorted(groups.values(), key=lambda g: g.latest_timestamp or 0, reverse=True)


def visible_groups(groups: list[TradeGroup], open_only: bool = False) -> list[TradeGroup]:
    if not open_only:
        return groups
    return [g for g in groups if g.has_active_position]


def count_trades(groups: Iterable[TradeGroup]) -> int:
    return sum(len(g.trades) for g in groups)
