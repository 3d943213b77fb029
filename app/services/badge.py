"""
Badge / summary indicator.

The extension shows a compact total on its icon. Here the indicator is published
into the sync area (badgeText / badgeTooltip) so every UI surface can render it.
The aggregator is the only caller.
"""

import logging
from typing import Protocol

from app.core.store import SYNC, StateStore

logger = logging.getLogger(__name__)

ERROR_GLYPH = "!"
NO_ADDRESS_GLYPH = "—"


class Badge(Protocol):
    async def update(self, text: str, tooltip: str) -> None:
        ...


class StoreBadge:
    def __init__(self, store: StateStore):
        self.store = store

    async def update(self, text: str, tooltip: str) -> None:
        logger.info("[badge] %s (%s)", text, tooltip)
        await self.store.set(SYNC, {"badgeText": text, "badgeTooltip": tooltip})
