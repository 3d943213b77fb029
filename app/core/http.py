"""
Shared aiohttp session for the Polymarket Data API and the Polygon RPC node.

Usage:
    from app.core.http import get_http_session, close_http_session
"""

import aiohttp

from app.core.config import HTTP_TIMEOUT_SECONDS

_session: aiohttp.ClientSession | None = None


async def get_http_session() -> aiohttp.ClientSession:
    """Return the shared client session, creating it on first call."""
    global _session
    if _session is None or _session.closed:
        _session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=HTTP_TIMEOUT_SECONDS),
            headers={"Accept": "application/json"},
        )
    return _session


async def close_http_session() -> None:
    """Close the client session. Called during app shutdown."""
    global _session
    if _session is not None:
        await _session.close()
        _session = None
