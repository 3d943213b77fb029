"""
Refresh trigger — serializes snapshot refreshes per wallet.

Triggers:
    - APScheduler interval job (app/core/scheduler.py)
    - POST /messages {type: "refresh"}
    - PUT /portfolio/address
    - a change of the stored `address` key (watch_address)

Re-entrancy policy: queue-once coalescing. While a refresh for a wallet is in flight,
the first extra request schedules exactly one follow-up run that starts when the
current one settles; any further requests join that follow-up. Two aggregations for
the same wallet never overlap, so their store writes never interleave.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from app.core.config import DEFAULT_OPEN_IN_POPUP
from app.core.errors import describe_error
from app.core.store import SYNC, StateStore, StorageChange, Subscription, get_store
from app.models.portfolio import RefreshResult
from app.services.badge import Badge, StoreBadge
from app.workers.portfolio import refresh_portfolio

logger = logging.getLogger(__name__)

Refresher = Callable[..., Awaitable[RefreshResult]]


def _wallet_key(wallet: Optional[str]) -> str:
    return (wallet or "").strip().lower()


class RefreshCoordinator:
    """Owns the per-wallet in-flight / queued refresh tasks."""

    def __init__(
        self,
        store: StateStore,
        badge: Optional[Badge] = None,
        refresher: Refresher = refresh_portfolio,
    ):
        self.store = store
        self.badge = badge or StoreBadge(store)
        self._refresher = refresher
        self._in_flight: dict[str, asyncio.Task] = {}
        self._queued: dict[str, asyncio.Task] = {}
        self._address_watch: Optional[Subscription] = None

    def is_refreshing(self, wallet: Optional[str]) -> bool:
        return _wallet_key(wallet) in self._in_flight

    def request(self, wallet: Optional[str]) -> asyncio.Task:
        """
        Register a refresh request without awaiting it.
        Returns the task whose result the request will receive.
        """
        key = _wallet_key(wallet)

        queued = self._queued.get(key)
        if queued is not None:
            logger.debug("[refresh] %s: joining queued follow-up", key or "<none>")
            return queued

        current = self._in_flight.get(key)
        if current is None:
            task = asyncio.create_task(self._run(key, wallet, None))
            self._in_flight[key] = task
            return task

        logger.info("[refresh] %s: refresh already in flight, queued one follow-up", key or "<none>")
        task = asyncio.create_task(self._run(key, wallet, current))
        self._queued[key] = task
        return task

    async def refresh(self, wallet: Optional[str], join_in_flight: bool = False) -> RefreshResult:
        """
        Refresh `wallet` and wait for the result.

        With join_in_flight, a refresh that is already running is reused instead of
        queuing a follow-up (used right after the address was saved, since the address
        watcher has already started one).
        """
        key = _wallet_key(wallet)
        if join_in_flight and key in self._in_flight and key not in self._queued:
            return await asyncio.shield(self._in_flight[key])
        return await asyncio.shield(self.request(wallet))

    async def refresh_now(self) -> RefreshResult:
        """Refresh whatever wallet is currently stored."""
        stored = await self.store.get(SYNC, ["address"])
        return await self.refresh(stored.get("address"))

    async def _run(self, key: str, wallet: Optional[str], previous: Optional[asyncio.Task]) -> RefreshResult:
        me = asyncio.current_task()
        if previous is not None:
            await asyncio.wait([previous])
            if self._queued.get(key) is me:
                del self._queued[key]
            self._in_flight[key] = me
        try:
            return await self._refresh_once(wallet)
        finally:
            if self._in_flight.get(key) is me:
                del self._in_flight[key]

    async def _refresh_once(self, wallet: Optional[str]) -> RefreshResult:
        try:
            return await self._refresher(self.store, wallet, badge=self.badge)
        except Exception as exc:
            logger.error("[refresh] Refresh of %s failed unexpectedly: %s", wallet, exc, exc_info=True)
            return RefreshResult(success=False, status="total_failure", error=describe_error(exc))

    # ------------------------------------------------------------------
    # Store watchers
    # ------------------------------------------------------------------

    def watch_address(self) -> Subscription:
        """Refresh whenever the stored address changes."""
        if self._address_watch is not None and self._address_watch.active:
            return self._address_watch

        def on_change(event: StorageChange) -> None:
            if event.area != SYNC or "address" not in event.changes:
                return
            new_address = event.changes["address"].get("newValue")
            logger.info("[refresh] Address changed to %s", new_address)
            self.request(new_address)

        self._address_watch = self.store.subscribe(on_change)
        return self._address_watch

    async def close(self) -> None:
        if self._address_watch is not None:
            self._address_watch.dispose()
            self._address_watch = None
        tasks = list(self._in_flight.values()) + list(self._queued.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._in_flight.clear()
        self._queued.clear()


async def seed_defaults(store: StateStore) -> None:
    """First-run defaults; never overwrites a value a UI surface already chose."""
    current = await store.get(SYNC, ["openInPopup"])
    if "openInPopup" not in current:
        await store.set(SYNC, {"openInPopup": DEFAULT_OPEN_IN_POPUP})


async def run_scheduled_refresh(coordinator: RefreshCoordinator) -> None:
    """Interval job entrypoint. Never raises into the scheduler."""
    try:
        result = await coordinator.refresh_now()
        logger.info("[refresh] Scheduled refresh: %s", result.status)
    except Exception as exc:
        logger.error("[refresh] Scheduled refresh failed: %s", exc, exc_info=True)


# ---------------------------------------------------------------------------
# Process-wide coordinator
# ---------------------------------------------------------------------------

_coordinator: RefreshCoordinator | None = None


async def get_coordinator() -> RefreshCoordinator:
    """Return the shared coordinator, creating it on first call."""
    global _coordinator
    if _coordinator is None:
        _coordinator = RefreshCoordinator(await get_store())
    return _coordinator


async def close_coordinator() -> None:
    global _coordinator
    if _coordinator is not None:
        await _coordinator.close()
        _coordinator = None
