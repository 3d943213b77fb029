"""
Polymarket quote fetchers — Data API (REST) and Polygon RPC (USDC balance).

Each fetcher performs exactly one outbound call through the shared aiohttp session
and either returns a value or raises one of UpstreamError / RpcError / FormatError.
No retries and no caching here; the caller decides what a failure means.
"""

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from app.core.config import (
    DATA_API_BASE,
    ERC20_BALANCE_OF_SELECTOR,
    POLYGON_RPC_URL,
    TRADES_LIMIT,
    USDC_CONTRACT,
    USDC_DECIMALS,
)
from app.core.errors import FormatError, PortfolioError, RpcError, UpstreamError, describe_error
from app.core.http import get_http_session
from app.services.format import parse_number
from app.services.normalize import normalize_address

logger = logging.getLogger(__name__)


def _http_error_message(context: str, status: int) -> str:
    return f"{context} failed with HTTP {status}"


async def _read_json(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    context: str,
    **kwargs: Any,
) -> Any:
    """Issue one request and decode its JSON body, mapping failures onto the error taxonomy."""
    try:
        async with session.request(method, url, **kwargs) as response:
            if not 200 <= response.status < 300:
                raise UpstreamError(_http_error_message(context, response.status), status=response.status)
            try:
                return await response.json(content_type=None)
            except ValueError as exc:
                raise FormatError(f"{context} returned a non-JSON body") from exc
    except PortfolioError:
        raise
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        raise UpstreamError(f"{context} failed: {describe_error(exc)}") from exc


# ---------------------------------------------------------------------------
# Data API
# ---------------------------------------------------------------------------

async def fetch_positions(
    wallet: str,
    session: Optional[aiohttp.ClientSession] = None,
) -> list[Any]:
    """Fetch the raw open positions for a wallet."""
    try:
        session = session or await get_http_session()
        data = await _read_json(
            session, "GET", f"{DATA_API_BASE}/positions", "Positions request",
            params={"user": wallet},
        )
        if not isinstance(data, list):
            raise FormatError("Unexpected positions response format")
        return data
    except Exception as exc:
        logger.error("[polymarket] Failed to fetch positions for %s: %s", wallet, exc)
        raise


async def fetch_trades(
    wallet: str,
    limit: int = TRADES_LIMIT,
    session: Optional[aiohttp.ClientSession] = None,
) -> list[Any]:
    """Fetch the raw trade history for a wallet, newest first as the API returns it."""
    try:
        session = session or await get_http_session()
        data = await _read_json(
            session, "GET", f"{DATA_API_BASE}/trades", "Trades request",
            params={"user": wallet, "limit": str(limit)},
        )
        if not isinstance(data, list):
            raise FormatError("Unexpected trades response format")
        return data
    except Exception as exc:
        logger.error("[polymarket] Failed to fetch trades for %s: %s", wallet, exc)
        raise


async def fetch_positions_value(
    wallet: str,
    session: Optional[aiohttp.ClientSession] = None,
) -> float:
    """
    Server-computed positions total.

    Not used by the aggregator: the displayed total is always summed from the
    normalized positions so the list and the total can never disagree.
    """
    try:
        session = session or await get_http_session()
        data = await _read_json(
            session, "GET", f"{DATA_API_BASE}/value", "Portfolio value request",
            params={"user": wallet},
        )
        if isinstance(data, list):
            first = data[0] if data else None
            value = first.get("value") if isinstance(first, dict) else None
        elif isinstance(data, dict):
            value = data.get("value")
        else:
            value = None

        numeric = parse_number(value)
        if numeric is None:
            raise FormatError("Unexpected value response format")
        return numeric
    except Exception as exc:
        logger.error("[polymarket] Failed to fetch positions value for %s: %s", wallet, exc)
        raise


# ---------------------------------------------------------------------------
# Polygon RPC
# ---------------------------------------------------------------------------

def build_balance_of_call(wallet: str) -> str:
    """balanceOf(address) call data: 4-byte selector + address left-padded to 32 bytes."""
    return ERC20_BALANCE_OF_SELECTOR + normalize_address(wallet).rjust(64, "0")


def parse_token_amount(hex_value: str, decimals: int = USDC_DECIMALS) -> float:
    """Unsigned hex quantity → human-readable token amount."""
    text = hex_value.strip()
    if text.startswith("-"):
        raise FormatError("Failed to parse USDC balance")
    try:
        raw = 0 if text.lower() == "0x" else int(text, 16)
    except ValueError as exc:
        raise FormatError("Failed to parse USDC balance") from exc

    try:
        balance = raw / 10 ** decimals
    except OverflowError as exc:
        raise FormatError("USDC balance is not a finite number") from exc
    if parse_number(balance) is None:
        raise FormatError("USDC balance is not a finite number")
    return balance


async def fetch_cash_value(
    wallet: str,
    session: Optional[aiohttp.ClientSession] = None,
) -> float:
    """USDC balance of the wallet on Polygon via a single eth_call."""
    payload = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "eth_call",
        "params": [
            {"to": USDC_CONTRACT, "data": build_balance_of_call(wallet)},
            "latest",
        ],
    }
    try:
        session = session or await get_http_session()
        body = await _read_json(
            session, "POST", POLYGON_RPC_URL, "Polygon RPC request",
            json=payload,
        )
        if not isinstance(body, dict):
            raise FormatError("Invalid Polygon RPC response")

        error = body.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else None
            code = error.get("code") if isinstance(error, dict) else None
            raise RpcError(message or "Polygon RPC error", code=code)

        hex_value = body.get("result")
        if not isinstance(hex_value, str):
            raise FormatError("Invalid Polygon RPC response")

        return parse_token_amount(hex_value)
    except Exception as exc:
        logger.error("[polymarket] Failed to fetch USDC balance for %s: %s", wallet, exc)
        raise
