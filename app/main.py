"""
Tidview Backend — FastAPI entry point.

Startup sequence:
    1. Configure logging, open the shared state store (memory or Redis)
    2. Seed first-run defaults, watch the stored address
    3. Start the Redis change relay (Redis backend only) and the refresh scheduler
    4. Run an initial refresh so the store is populated before serving requests

Shutdown:
    5. Stop the scheduler and the change relay
    6. Cancel pending refreshes, close the store, HTTP session and Redis
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.routes import messages, portfolio
from app.core.config import ENVIRONMENT, STORE_BACKEND
from app.core.http import close_http_session
from app.core.logging import configure_logging
from app.core.redis import close_redis, ping_redis
from app.core.scheduler import create_scheduler
from app.core.store import RedisStateStore, close_store, get_store
from app.workers.refresh import close_coordinator, get_coordinator, seed_defaults

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage the application lifecycle.
    All startup logic runs before yield; shutdown logic runs after.
    """
    logger.info("Starting Tidview backend...")

    store = await get_store()
    await seed_defaults(store)

    coordinator = await get_coordinator()
    coordinator.watch_address()

    listener = None
    if isinstance(store, RedisStateStore):
        listener = asyncio.create_task(store.listen())

    scheduler = create_scheduler(coordinator)
    scheduler.start()
    logger.info("Refresh scheduler started.")

    # Populate the store before serving requests
    logger.info("Running initial refresh...")
    result = await coordinator.refresh_now()
    logger.info("Initial refresh: %s", result.status)

    yield

    # Graceful shutdown
    logger.info("Shutting down...")

    scheduler.shutdown(wait=False)
    if listener is not None:
        listener.cancel()
        await asyncio.gather(listener, return_exceptions=True)

    await close_coordinator()
    await close_store()
    await close_http_session()
    await close_redis()
    logger.info("Shutdown complete.")


app = FastAPI(
    title="Tidview Backend",
    description="Polymarket wallet snapshot service backing the Tidview popup, side panel and portfolio page.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(portfolio.router, prefix="/portfolio", tags=["portfolio"])
app.include_router(messages.router, prefix="/messages", tags=["messages"])


@app.get("/health", tags=["health"])
async def health() -> dict:
    status = "ok"
    if STORE_BACKEND == "redis" and not await ping_redis():
        status = "degraded"
    return {"status": status, "store": STORE_BACKEND, "environment": ENVIRONMENT}
