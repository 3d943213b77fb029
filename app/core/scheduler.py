"""
APScheduler setup for the periodic portfolio refresh.

Uses AsyncIOScheduler so the job runs in the same event loop as FastAPI.
A scheduler is created per app lifespan and started/stopped in main.py.

Jobs:
    portfolio_refresh   refresh the stored wallet every POLL_MINUTES
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import POLL_MINUTES
from app.workers.refresh import RefreshCoordinator, run_scheduled_refresh

logger = logging.getLogger(__name__)


def create_scheduler(coordinator: RefreshCoordinator, poll_minutes: float = POLL_MINUTES) -> AsyncIOScheduler:
    """
    Build a scheduler with all background jobs registered.
    main.py calls scheduler.start() right after this returns.
    """
    scheduler = AsyncIOScheduler()

    # Portfolio snapshot refresh for the stored wallet.
    # Overlap with manual refreshes is handled by the coordinator's per-wallet queue;
    # max_instances=1 keeps the timer itself from stacking runs when the API is slow.
    scheduler.add_job(
        run_scheduled_refresh,
        trigger=IntervalTrigger(minutes=poll_minutes),
        args=[coordinator],
        id="portfolio_refresh",
        name="Portfolio Snapshot Refresh",
        replace_existing=True,
        misfire_grace_time=60,    # Allow up to 1 min late start before skipping
        max_instances=1,          # Never run two timer refreshes concurrently
        coalesce=True,            # Collapse missed ticks into one run
    )

    logger.info("[scheduler] Registered %d jobs (every %.2f min)", len(scheduler.get_jobs()), poll_minutes)
    return scheduler
