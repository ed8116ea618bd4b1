"""
Time Utilities

Exchanges stamp events and expect request timestamps in different units:
- Binance / Bybit: milliseconds since epoch (e.g., 1704110400000)
- OKX login: seconds since epoch (e.g., "1704110400")

These helpers turn both into timezone-aware UTC datetimes for the schemas
and produce the integer timestamps that signed requests carry.
"""

import time
from datetime import datetime, timezone
from typing import Union


def to_utc_datetime(timestamp: Union[int, float, str]) -> datetime:
    """
    Convert a timestamp (seconds or milliseconds) to UTC datetime.

    Values above 1e12 are taken as milliseconds. Numeric strings, as OKX
    sends them, are accepted.

    Raises:
        ValueError: If timestamp is negative or not a number

    Examples:
        >>> to_utc_datetime(1704110400000)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
        >>> to_utc_datetime("1704110400")
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """
    value = float(timestamp)
    if value < 0:
        raise ValueError(f"Timestamp cannot be negative: {timestamp}")

    if value > 1e12:
        value = value / 1000.0

    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OSError, OverflowError) as e:
        raise ValueError(f"Invalid timestamp: {timestamp}. Error: {e}")


def current_utc_timestamp(milliseconds: bool = False) -> int:
    """Current Unix time in seconds, or milliseconds if requested."""
    if milliseconds:
        return time.time_ns() // 1_000_000
    return int(time.time())


def current_utc_datetime() -> datetime:
    return datetime.now(timezone.utc)
