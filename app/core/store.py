"""
Shared state store — the single place refresh results are published to.

Two areas, mirroring the extension's storage:
    sync     durable, small scalars (totals, timestamps, errors, preferences)
    session  ephemeral, large payloads (positions, trades); expires with the session

Readers never get a guaranteed initial value: every key may be absent.

Writers go through set() / set_many(). Every write that actually changes a value
produces one StorageChange per area, delivered to subscribers as
    {key: {"oldValue": ..., "newValue": ...}}
Subscriptions are explicit: subscribe() returns a Subscription that the caller
disposes when its surface goes away.

Backends:
    MemoryStateStore  single process (default, tests)
    RedisStateStore   shared between processes; changes are fanned out on a
                      pub/sub channel and relayed by listen()
"""

import asyncio
import inspect
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

import redis.asyncio as aioredis

from app.core.config import SESSION_TTL_SECONDS, STORE_BACKEND, STORE_PREFIX

logger = logging.getLogger(__name__)

SYNC = "sync"
SESSION = "session"
AREAS = (SYNC, SESSION)

MAX_BACKOFF = 60
INITIAL_BACKOFF = 1


@dataclass
class StorageChange:
    area: str
    changes: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"area": self.area, "changes": self.changes}


ChangeCallback = Callable[[StorageChange], Union[Awaitable[None], None]]


class Subscription:
    """Handle returned by StateStore.subscribe(). Dispose it to stop receiving changes."""

    def __init__(self, store: "StateStore", callback: ChangeCallback):
        self._store = store
        self.callback = callback
        self.active = True

    def dispose(self) -> None:
        if self.active:
            self.active = False
            self._store._remove_subscription(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()


def _check_area(area: str) -> None:
    if area not in AREAS:
        raise ValueError(f"Unknown storage area '{area}' (expected one of {AREAS})")


def _jsonable(value: Any) -> Any:
    """Round-trip through JSON so stored values never alias caller objects."""
    return json.loads(json.dumps(value))


def _diff(current: dict[str, Any], patch: dict[str, Any]) -> dict[str, dict[str, Any]]:
    changes: dict[str, dict[str, Any]] = {}
    for key, value in patch.items():
        if key in current and current[key] == value:
            continue
        changes[key] = {"oldValue": current.get(key), "newValue": value}
    return changes


class StateStore:
    """Key-value store with change notification. Subclasses implement get() and _write()."""

    def __init__(self):
        self._subscriptions: list[Subscription] = []

    async def get(self, area: str, keys: Optional[Iterable[str]] = None) -> dict[str, Any]:
        raise NotImplementedError

    async def get_all(self) -> dict[str, dict[str, Any]]:
        return {area: await self.get(area) for area in AREAS}

    async def set(self, area: str, patch: dict[str, Any]) -> list[StorageChange]:
        return await self.set_many({area: patch})

    async def set_many(self, patches: dict[str, dict[str, Any]]) -> list[StorageChange]:
        """Apply patches to several areas as one batch, then notify subscribers."""
        for area in patches:
            _check_area(area)
        normalized = {area: {k: _jsonable(v) for k, v in patch.items()} for area, patch in patches.items()}
        events = await self._write(normalized)
        await self._notify(events)
        return events

    async def _write(self, patches: dict[str, dict[str, Any]]) -> list[StorageChange]:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: ChangeCallback) -> Subscription:
        subscription = Subscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _remove_subscription(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def _notify(self, events: list[StorageChange]) -> None:
        for event in events:
            for subscription in list(self._subscriptions):
                if not subscription.active:
                    continue
                try:
                    result = subscription.callback(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception as exc:
                    logger.error("[store] Subscriber failed on %s change: %s", event.area, exc, exc_info=True)

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.dispose()


class MemoryStateStore(StateStore):
    """In-process store. Writes are serialized by a lock so a batch is never observed half-applied."""

    def __init__(self):
        super().__init__()
        self._data: dict[str, dict[str, Any]] = {area: {} for area in AREAS}
        self._lock = asyncio.Lock()

    async def get(self, area: str, keys: Optional[Iterable[str]] = None) -> dict[str, Any]:
        _check_area(area)
        data = self._data[area]
        if keys is None:
            return _jsonable(data)
        return {k: _jsonable(data[k]) for k in keys if k in data}

    async def _write(self, patches: dict[str, dict[str, Any]]) -> list[StorageChange]:
        events = []
        async with self._lock:
            for area, patch in patches.items():
                data = self._data[area]
                changes = _diff(data, patch)
                for key in changes:
                    data[key] = patch[key]
                if changes:
                    events.append(StorageChange(area=area, changes=changes))
        return events


class RedisStateStore(StateStore):
    """
    Redis-backed store: one hash per area with JSON-encoded values.

    A batch runs in a single MULTI/EXEC transaction together with the publish of
    its change events, so other processes never see one area updated without the other.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        prefix: str = STORE_PREFIX,
        session_ttl: int = SESSION_TTL_SECONDS,
    ):
        super().__init__()
        self._redis = redis
        self._prefix = prefix
        self._session_ttl = session_ttl
        self._lock = asyncio.Lock()
        self.origin = uuid.uuid4().hex

    def _key(self, area: str) -> str:
        return f"{self._prefix}:{area}"

    @property
    def channel(self) -> str:
        return f"{self._prefix}:changes"

    async def get(self, area: str, keys: Optional[Iterable[str]] = None) -> dict[str, Any]:
        _check_area(area)
        if keys is None:
            raw = await self._redis.hgetall(self._key(area))
            return {k: json.loads(v) for k, v in raw.items()}
        keys = list(keys)
        if not keys:
            return {}
        values = await self._redis.hmget(self._key(area), keys)
        return {k: json.loads(v) for k, v in zip(keys, values) if v is not None}

    async def _write(self, patches: dict[str, dict[str, Any]]) -> list[StorageChange]:
        async with self._lock:
            events = []
            for area, patch in patches.items():
                current = await self.get(area, patch.keys())
                changes = _diff(current, patch)
                if changes:
                    events.append(StorageChange(area=area, changes=changes))

            async with self._redis.pipeline(transaction=True) as pipe:
                for area, patch in patches.items():
                    if not patch:
                        continue
                    pipe.hset(self._key(area), mapping={k: json.dumps(v) for k, v in patch.items()})
                    if area == SESSION and self._session_ttl > 0:
                        pipe.expire(self._key(area), self._session_ttl)
                for event in events:
                    pipe.publish(self.channel, json.dumps({"origin": self.origin, **event.to_dict()}))
                await pipe.execute()
        return events

    async def _relay(self, raw: str) -> None:
        """Deliver a change published by another process to local subscribers."""
        try:
            payload = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            logger.warning("[store] Non-JSON change message: %s", str(raw)[:200])
            return

        if payload.get("origin") == self.origin:
            return
        area = payload.get("area")
        if area not in AREAS:
            return
        await self._notify([StorageChange(area=area, changes=payload.get("changes") or {})])

    async def listen(self) -> None:
        """
        Relay loop for cross-process change events, with exponential backoff reconnection.
        Intended to be run as an asyncio.create_task() from the FastAPI lifespan.
        """
        backoff = INITIAL_BACKOFF

        while True:
            try:
                pubsub = self._redis.pubsub()
                await pubsub.subscribe(self.channel)
                logger.info("[store] Listening for changes on %s", self.channel)
                backoff = INITIAL_BACKOFF
                try:
                    async for message in pubsub.listen():
                        if message.get("type") == "message":
                            await self._relay(message.get("data"))
                finally:
                    await pubsub.aclose()

            except asyncio.CancelledError:
                logger.info("[store] Listener cancelled, shutting down.")
                return
            except Exception as exc:
                logger.error("[store] Listener error: %s, reconnecting in %ds", exc, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, MAX_BACKOFF)


# ---------------------------------------------------------------------------
# Process-wide store
# ---------------------------------------------------------------------------

_store: StateStore | None = None


async def get_store() -> StateStore:
    """Return the shared store, creating it on first call according to STORE_BACKEND."""
    global _store
    if _store is None:
        if STORE_BACKEND == "redis":
            from app.core.redis import get_redis

            _store = RedisStateStore(await get_redis())
        else:
            _store = MemoryStateStore()
        logger.info("[store] Using %s backend", type(_store).__name__)
    return _store


async def close_store() -> None:
    """Dispose all subscriptions. The Redis connection itself is closed by close_redis()."""
    global _store
    if _store is not None:
        await _store.close()
        _store = None
