"""
Display formatting shared by the badge and the API responses.

Every formatter accepts loosely typed input (numbers, numeric strings, None) and
renders a missing or unparsable value as "—".
"""

import math
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

MISSING = "—"


def parse_number(value: Any) -> Optional[float]:
    """Coerce to a finite float, or None. Booleans and blank strings are not numbers."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            parsed = float(value)
        except (OverflowError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = float(text)
        except ValueError:
            return None
    else:
        return None
    return parsed if math.isfinite(parsed) else None


def round_half_up(value: float) -> int:
    """Round .5 towards +infinity, like JavaScript's Math.round."""
    # floor(value + 0.5) misrounds 0.49999999999999994 because the sum rounds to 1.0
    floor = math.floor(value)
    return floor + 1 if value - floor >= 0.5 else floor


def _one_decimal(value: float) -> str:
    # Decimal(value) is the exact binary value, so 4.35 (stored as 4.3499…) rounds down
    return str(Decimal(value).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def format_badge(value: Any) -> str:
    """Compact badge text: 999, 1.2k, 12k, 1M."""
    num = parse_number(value)
    if num is None:
        return MISSING
    rounded = round_half_up(num)
    if rounded < 1000:
        return str(rounded)
    if rounded < 10000:
        text = _one_decimal(rounded / 1000)
        if text.endswith(".0"):
            text = text[:-2]
        return text + "k"
    if rounded < 1000000:
        return f"{round_half_up(rounded / 1000)}k"
    return f"{round_half_up(rounded / 1000000)}M"


def format_currency(value: Any) -> str:
    num = parse_number(value)
    if num is None:
        return MISSING
    sign = "-" if num < 0 else ""
    return f"{sign}${abs(num):,.2f}"


def format_signed_currency(value: Any) -> str:
    num = parse_number(value)
    if num is None:
        return MISSING
    formatted = f"${abs(num):,.2f}"
    return f"+{formatted}" if num >= 0 else f"-{formatted}"


def format_percent(value: Any, digits: int = 1) -> str:
    num = parse_number(value)
    if num is None:
        return MISSING
    formatted = f"{num:.{digits}f}"
    return f"+{formatted}%" if num >= 0 else f"{formatted}%"


def format_number(value: Any, max_digits: int = 2) -> str:
    num = parse_number(value)
    if num is None:
        return MISSING
    text = f"{num:,.{max_digits}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _to_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    num = parse_number(value)
    if num is not None:
        try:
            return datetime.fromtimestamp(num / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def format_date(value: Any) -> str:
    parsed = _to_datetime(value)
    if parsed is None:
        return "No end date"
    return parsed.date().isoformat()


def format_timestamp(value: Any) -> str:
    """Epoch milliseconds or ISO string → 'YYYY-MM-DD HH:MM:SS' (UTC when zone-aware)."""
    parsed = _to_datetime(value)
    if parsed is None:
        return "Unknown time"
    return parsed.strftime("%Y-%m-%d %H:%M:%S")


def format_side(value: Any) -> str:
    if not value:
        return ""
    return str(value).upper()


def trend_class(value: Any) -> str:
    num = parse_number(value)
    if num is None or num == 0:
        return "neutral"
    return "positive" if num > 0 else "negative"


def ensure_positive_integer(value: Any, fallback: int = 1) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return fallback
    return parsed if parsed > 0 else fallback


def format_address(address: Any) -> str:
    """Shorten a wallet for display: 0x1234...abcd."""
    if not isinstance(address, str):
        return ""
    trimmed = address.strip()
    if len(trimmed) <= 12:
        return trimmed
    return f"{trimmed[:6]}...{trimmed[-4:]}"
