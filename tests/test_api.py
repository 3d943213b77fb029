"""
HTTP tests for the message and portfolio routes.

The app is driven through httpx's ASGI transport, which does not run the
lifespan, so no scheduler starts and nothing reaches the network. The store and
coordinator dependencies are overridden with test instances.
"""

import asyncio
import json
from functools import partial

import httpx
import pytest

from app.api.routes.portfolio import stream_changes
from app.core.errors import RpcError
from app.core.config import ENVIRONMENT, STORE_BACKEND
from app.core.store import SESSION, SYNC, get_store
from app.main import app
from app.workers.portfolio import INVALID_ADDRESS_MESSAGE, refresh_portfolio
from app.workers.refresh import RefreshCoordinator, get_coordinator

POSITIONS = [
    {"asset": "a1", "title": "Will X happen?", "currentValue": "100.50", "outcome": "Yes"},
    {"asset": "a2", "title": "Will Y happen?", "currentValue": "20", "outcome": "No"},
]

TRADES = [
    {"transactionHash": "0x1", "slug": "x", "title": "Will X happen?", "outcome": "Yes",
     "side": "BUY", "size": 10, "price": 0.5, "timestamp": 1700000000},
    {"transactionHash": "0x2", "slug": "z", "title": "Will Z happen?", "outcome": "Yes",
     "side": "BUY", "size": 4, "price": 0.2, "timestamp": 1600000000},
    {"transactionHash": "0x3", "slug": "z", "title": "Will Z happen?", "outcome": "Yes",
     "side": "SELL", "size": 4, "price": 0.9, "timestamp": 1650000000},
]


@pytest.fixture
def fetchers(stub_fetchers):
    return stub_fetchers(positions=POSITIONS, cash=5.0, trades=TRADES)


@pytest.fixture
def coordinator(store, fetchers):
    return RefreshCoordinator(
        store, refresher=partial(refresh_portfolio, fetchers=fetchers.as_dict()),
    )


@pytest.fixture
async def client(store, coordinator):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["store"] == STORE_BACKEND
        assert body["environment"] == ENVIRONMENT


class TestMessages:
    async def test_refresh_without_address(self, client, fetchers):
        response = await client.post("/messages/", json={"type": "refresh"})
        assert response.status_code == 200
        assert response.json() == {"success": False, "error": INVALID_ADDRESS_MESSAGE}
        assert fetchers.calls == []

    async def test_refresh(self, client, store, wallet):
        await store.set(SYNC, {"address": wallet})
        response = await client.post("/messages/", json={"type": "refresh"})
        assert response.json() == {"success": True}
        assert (await store.get(SYNC))["totalValue"] == 125.5

    async def test_refresh_partial_failure_reports_error(self, client, store, wallet, fetchers):
        fetchers.outcomes["cash"] = RpcError("execution reverted")
        await store.set(SYNC, {"address": wallet})
        response = await client.post("/messages/", json={"type": "refresh"})
        assert response.json() == {"success": True, "error": "execution reverted"}

    async def test_set_open_mode(self, client, store):
        response = await client.post("/messages/", json={"type": "setOpenMode", "openInPopup": True})
        assert response.json() == {"success": True}
        assert (await store.get(SYNC))["openInPopup"] is True

        await client.post("/messages/", json={"type": "setOpenMode", "openInPopup": False})
        assert (await store.get(SYNC))["openInPopup"] is False

    async def test_unknown_type(self, client):
        response = await client.post("/messages/", json={"type": "explode"})
        assert response.status_code == 400

    async def test_missing_type(self, client):
        response = await client.post("/messages/", json={})
        assert response.status_code == 422


class TestPortfolio:
    async def test_empty_state(self, client):
        response = await client.get("/portfolio/")
        assert response.status_code == 200
        body = response.json()
        assert body["totalValue"] is None
        assert body["positions"] is None
        assert body["address"] is None

    async def test_snapshot(self, client, store, coordinator, wallet):
        await store.set(SYNC, {"address": wallet})
        await coordinator.refresh(wallet)

        body = (await client.get("/portfolio/")).json()
        assert body["address"] == wallet
        assert body["positionsValue"] == 120.5
        assert body["cashValue"] == 5.0
        assert body["totalValue"] == 125.5
        assert body["valuesError"] is None
        assert body["badgeText"] == "126"
        assert [p["id"] for p in body["positions"]] == ["a1", "a2"]
        assert body["positions"][0]["currentValue"] == 100.5
        assert "trades" not in body

    async def test_snapshot_display_fields(self, client, store, coordinator, wallet):
        await store.set(SYNC, {"address": wallet})
        await coordinator.refresh(wallet)

        body = (await client.get("/portfolio/")).json()
        assert body["addressDisplay"] == "0x1111...1111"
        assert body["valuesUpdatedDisplay"] not in (None, "Unknown time")

        first = body["positions"][0]
        assert first["valueDisplay"] == "$100.50"
        assert first["pnlDisplay"] == "—"
        assert first["percentPnlDisplay"] == "—"
        assert first["trend"] == "neutral"
        assert first["sizeDisplay"] == ""
        assert first["priceDisplay"] == ""
        assert first["endDateDisplay"] == "No end date"

    async def test_position_display_with_pnl(self, client, store, wallet):
        position = {
            "id": "p1", "title": "Will X happen?", "size": 12.5, "avgPrice": 0.4, "curPrice": 0.55,
            "currentValue": 6.9, "cashPnl": -1.25, "percentPnl": -15.38, "endDate": "2025-01-01T00:00:00Z",
        }
        await store.set(SESSION, {"positions": [position]})

        first = (await client.get("/portfolio/")).json()["positions"][0]
        assert first["valueDisplay"] == "$6.90"
        assert first["pnlDisplay"] == "-$1.25"
        assert first["percentPnlDisplay"] == "-15.4%"
        assert first["trend"] == "negative"
        assert first["sizeDisplay"] == "Size 12.5"
        assert first["priceDisplay"] == "@ 0.4 → 0.55"
        assert first["endDateDisplay"] == "2025-01-01"

    async def test_save_invalid_address(self, client, store, fetchers):
        response = await client.put("/portfolio/address", json={"address": "0x123"})
        assert response.status_code == 422
        assert response.json() == {"detail": INVALID_ADDRESS_MESSAGE}
        assert "address" not in await store.get(SYNC)
        assert fetchers.calls == []

    async def test_save_address_refreshes_once(self, client, store, coordinator, fetchers, wallet):
        coordinator.watch_address()
        response = await client.put("/portfolio/address", json={"address": f"  {wallet}  "})

        assert response.json() == {"success": True}
        assert (await store.get(SYNC))["address"] == wallet
        assert [name for name, _ in fetchers.calls].count("positions") == 1
        await coordinator.close()


class TestHistory:
    async def test_empty(self, client):
        body = (await client.get("/portfolio/history")).json()
        assert body["groups"] == []
        assert body["totalTrades"] == 0
        assert body["updatedAt"] is None
        assert body["page"] == 1
        assert body["totalPages"] == 1

    async def test_grouped(self, client, store, coordinator, wallet):
        await coordinator.refresh(wallet)

        body = (await client.get("/portfolio/history", params={"open_only": "false"})).json()
        assert body["openOnly"] is False
        assert [g["key"] for g in body["groups"]] == ["x", "z"]
        assert body["totalMarkets"] == 2
        assert body["totalTrades"] == 3
        assert body["hiddenTrades"] == 0
        assert body["updatedAt"] == (await store.get(SESSION))["tradesUpdatedAt"]

        z = body["groups"][1]
        assert [t["id"] for t in z["trades"]] == ["0x3", "0x2"]
        assert z["hasActivePosition"] is False

    async def test_open_only(self, client, coordinator, wallet):
        await coordinator.refresh(wallet)

        body = (await client.get("/portfolio/history", params={"open_only": "true"})).json()
        assert [g["key"] for g in body["groups"]] == ["x"]
        assert body["visibleTrades"] == 1
        assert body["hiddenTrades"] == 2

    async def test_open_only_by_default(self, client, coordinator, wallet):
        await coordinator.refresh(wallet)

        body = (await client.get("/portfolio/history")).json()
        assert body["openOnly"] is True
        assert [g["key"] for g in body["groups"]] == ["x"]
        assert body["pageSize"] == 5

    async def test_display_fields(self, client, coordinator, wallet):
        await coordinator.refresh(wallet)

        group = (await client.get("/portfolio/history")).json()["groups"][0]
        assert group["latestDisplay"] == "2023-11-14 22:13:20"
        trade = group["trades"][0]
        assert trade["sideLabel"] == "BUY"
        assert trade["amountDisplay"] == "10 @ 0.5"
        assert trade["timeDisplay"] == "2023-11-14 22:13:20"

    async def test_paging(self, client, coordinator, wallet):
        await coordinator.refresh(wallet)
        params = {"open_only": "false", "page_size": "1"}

        first = (await client.get("/portfolio/history", params=params)).json()
        assert [g["key"] for g in first["groups"]] == ["x"]
        assert first["page"] == 1
        assert first["totalPages"] == 2
        assert first["visibleTrades"] == 3

        second = (await client.get("/portfolio/history", params={**params, "page": "2"})).json()
        assert [g["key"] for g in second["groups"]] == ["z"]

        clamped = (await client.get("/portfolio/history", params={**params, "page": "99"})).json()
        assert clamped["page"] == 2
        assert [g["key"] for g in clamped["groups"]] == ["z"]

    @pytest.mark.parametrize("page_size", ["abc", "0", "-3"])
    async def test_bad_paging_falls_back(self, client, coordinator, wallet, page_size):
        await coordinator.refresh(wallet)

        body = (await client.get(
            "/portfolio/history", params={"open_only": "false", "page": "x", "page_size": page_size},
        )).json()
        assert body["page"] == 1
        assert body["pageSize"] == 5
        assert [g["key"] for g in body["groups"]] == ["x", "z"]


class ConnectedRequest:
    async def is_disconnected(self):
        return False


class TestStream:
    async def test_relays_store_changes(self, store):
        response = await stream_changes(ConnectedRequest(), store=store)
        body = response.body_iterator
        pending = asyncio.create_task(body.__anext__())
        for _ in range(5):
            await asyncio.sleep(0)
        assert store.subscriber_count == 1

        await store.set(SYNC, {"totalValue": 1.5})
        chunk = await pending
        assert chunk.startswith("data: ")
        assert json.loads(chunk[len("data: "):]) == {
            "area": SYNC,
            "changes": {"totalValue": {"oldValue": None, "newValue": 1.5}},
        }

        await body.aclose()
        assert store.subscriber_count == 0
