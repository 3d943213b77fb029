"""
Portfolio Snapshot Aggregator

One refresh for one wallet:
    validate → fetch positions + cash (+ trades) concurrently → normalize →
    one batched store write → badge update → RefreshResult

Failure policy (value sources are positions and cash):
    - both succeed         → ok
    - one fails            → partial_failure: snapshot still written, the failed value
                             is stored as None (never 0) and the reason goes to valuesError
    - both fail            → total_failure: only the error keys are written, previously
                             good values, positions and valuesUpdatedAt stay untouched
Trade history is auxiliary: its failure is recorded in tradesError and never changes
the status.

If the stored address stops matching the wallet while its fetches are in flight, the
run is superseded: nothing is written, the badge is left alone and the result has
status "superseded". The refresh started for the new address owns the store.

Fetcher errors never escape this module. Store errors do; the refresh coordinator
in app/workers/refresh.py turns those into a failed RefreshResult.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from app.core.config import FETCH_TRADES
from app.core.errors import InvalidAddress, PartialFailure, TotalFailure, describe_error
from app.core.store import SESSION, SYNC, StateStore
from app.models.portfolio import PortfolioSnapshot, RefreshResult
from app.services import polymarket
from app.services.badge import ERROR_GLYPH, NO_ADDRESS_GLYPH, Badge, StoreBadge
from app.services.format import format_badge, format_currency
from app.services.normalize import (
    INVALID_ADDRESS_MESSAGE,
    is_valid_address,
    normalize_positions,
    normalize_trades,
    sum_positions_value,
)

logger = logging.getLogger(__name__)

SUPERSEDED_MESSAGE = "Wallet address changed during refresh; result discarded."

# Sources that feed the displayed total, in the order their errors are reported
VALUE_SOURCES = ("positions", "cash")

Fetcher = Callable[[str], Awaitable[Any]]


def default_fetchers(include_trades: bool = FETCH_TRADES) -> dict[str, Fetcher]:
    fetchers: dict[str, Fetcher] = {
        "positions": polymarket.fetch_positions,
        "cash": polymarket.fetch_cash_value,
    }
    if include_trades:
        fetchers["trades"] = polymarket.fetch_trades
    return fetchers


def _now_ms() -> int:
    return int(time.time() * 1000)


async def _gather(wallet: str, fetchers: dict[str, Fetcher]) -> dict[str, Any]:
    """Run every fetcher concurrently and collect each outcome, success or failure."""
    names = list(fetchers)
    outcomes = await asyncio.gather(
        *(fetchers[name](wallet) for name in names),
        return_exceptions=True,
    )
    for outcome in outcomes:
        if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
            raise outcome
    return dict(zip(names, outcomes))


async def refresh_portfolio(
    store: StateStore,
    wallet: Optional[str],
    *,
    badge: Optional[Badge] = None,
    fetchers: Optional[dict[str, Fetcher]] = None,
) -> RefreshResult:
    """Produce one snapshot for `wallet`, publish it to the store and return the outcome."""
    badge = badge or StoreBadge(store)

    # 1. Validate, no network on invalid input
    if not is_valid_address(wallet):
        invalid = InvalidAddress(INVALID_ADDRESS_MESSAGE)
        logger.warning("[portfolio] Refresh skipped: invalid wallet %r", wallet)
        await store.set(SYNC, {"valuesError": invalid.message})
        await badge.update(NO_ADDRESS_GLYPH, "Set a wallet address to track its portfolio")
        return RefreshResult(success=False, status=invalid.kind, error=invalid.message)

    fetchers = fetchers if fetchers is not None else default_fetchers()
    missing = [name for name in VALUE_SOURCES if name not in fetchers]
    if missing:
        raise ValueError(f"Missing fetchers: {', '.join(missing)}")

    # 2. Fan out, join all
    started = time.monotonic()
    results = await _gather(wallet, fetchers)

    failures: dict[str, BaseException] = {}
    for name in VALUE_SOURCES:
        if isinstance(results[name], Exception):
            failures[name] = results[name]
            logger.warning(
                "[portfolio] %s source failed for %s (%s): %s",
                name, wallet, getattr(results[name], "kind", type(results[name]).__name__),
                describe_error(results[name]),
            )

    # 3. Decide
    error: Optional[str] = None
    status = "ok"
    if failures:
        failure = TotalFailure(failures) if len(failures) == len(VALUE_SOURCES) else PartialFailure(failures)
        status = failure.kind
        error = failure.message

    # 4. Normalize
    positions = []
    positions_value = None
    if "positions" not in failures:
        positions = normalize_positions(results["positions"])
        positions_value = sum_positions_value(positions)

    cash_value = None
    if "cash" not in failures:
        cash_value = float(results["cash"])

    trades = None
    trades_error = None
    if "trades" in results:
        if isinstance(results["trades"], Exception):
            trades_error = describe_error(results["trades"])
        else:
            trades = normalize_trades(results["trades"])

    now = _now_ms()
    snapshot = PortfolioSnapshot(
        positions_value=positions_value,
        cash_value=cash_value,
        positions=positions,
        trades=trades,
        updated_at=now,
        error=error,
    )

    # 5. One batch across both areas
    sync_patch: dict[str, Any]
    session_patch: dict[str, Any] = {}
    if status == "total_failure":
        sync_patch = {"valuesError": error}
    else:
        sync_patch = {
            "positionsValue": snapshot.positions_value,
            "cashValue": snapshot.cash_value,
            "totalValue": snapshot.total_value,
            "valuesUpdatedAt": now,
            "valuesError": error,
        }

    if "positions" in failures:
        session_patch["positionsError"] = describe_error(failures["positions"])
    else:
        session_patch.update({
            "positions": [p.to_store() for p in positions],
            "positionsUpdatedAt": now,
            "positionsError": None,
        })

    if trades is not None:
        session_patch.update({
            "trades": [t.to_store() for t in trades],
            "tradesUpdatedAt": now,
            "tradesError": None,
        })
    elif trades_error is not None:
        session_patch["tradesError"] = trades_error

    # A newer address owns the store now; this wallet's data must not land under it
    stored = (await store.get(SYNC, ["address"])).get("address")
    if isinstance(stored, str) and stored.strip().lower() != wallet.lower():
        logger.info("[portfolio] Discarding refresh of %s: stored address is now %s", wallet, stored)
        return RefreshResult(success=False, status="superseded", error=SUPERSEDED_MESSAGE, snapshot=snapshot)

    await store.set_many({SYNC: sync_patch, SESSION: session_patch})

    # 6. Badge
    if status == "total_failure":
        await badge.update(ERROR_GLYPH, f"Error fetching data: {error}")
    else:
        tooltip = f"Portfolio Total: {format_currency(snapshot.total_value)}"
        if status == "partial_failure":
            tooltip += f" (partial: {error})"
        await badge.update(format_badge(snapshot.total_value), tooltip)

    elapsed = time.monotonic() - started
    if status == "ok":
        logger.info(
            "[portfolio] Refreshed %s in %.2fs: %d positions, positions=%s cash=%s",
            wallet, elapsed, len(positions), positions_value, cash_value,
        )
    else:
        logger.warning("[portfolio] Refresh of %s finished with %s in %.2fs: %s", wallet, status, elapsed, error)

    # 7. Report
    return RefreshResult(
        success=status != "total_failure",
        status=status,
        error=error,
        snapshot=snapshot,
    )
