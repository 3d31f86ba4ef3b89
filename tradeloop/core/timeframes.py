"""Pure time utilities for deterministic timestamp handling.

All functions operate on UTC epoch milliseconds only (no timezone conversion).
"""
import math
import re
from typing import NamedTuple, Optional

from tradeloop.core.exceptions import (AlignmentError, InvalidDuration,
                                       InvalidTimeframe, InvalidTimestamp)

SECOND_MS = 1_000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS
WEEK_MS = 7 * DAY_MS

_UNIT_MS = {
    "m": MINUTE_MS,
    "h": HOUR_MS,
    "d": DAY_MS,
}

_TIMEFRAME_RE = re.compile(r"^(\d+)([mhd])$")


class ParsedTimeframe(NamedTuple):
    """Timeframe split into unit, count and duration."""
    unit: str
    n: int
    ms: int


def parse_timeframe(timeframe: str) -> ParsedTimeframe:
    """Parse a timeframe string such as "1m", "15m", "4h" or "1d".

    Args:
        timeframe: Timeframe string (case-insensitive, surrounding whitespace ignored)

    Returns:
        ParsedTimeframe with unit, count and milliseconds

    Raises:
        InvalidTimeframe: If the format is invalid or the count is not positive
    """
    if not isinstance(timeframe, str) or not timeframe:
        raise InvalidTimeframe(
            f"Invalid timeframe: expected string, got {type(timeframe).__name__}"
        )

    match = _TIMEFRAME_RE.match(timeframe.strip().lower())
    if not match:
        raise InvalidTimeframe(
            f'Invalid timeframe format: "{timeframe}". '
            f'Expected format like "1m", "5m", "1h", "1d"'
        )

    n = int(match.group(1))
    unit = match.group(2)
    if n <= 0:
        raise InvalidTimeframe(
            f'Invalid timeframe: period must be positive, got {n} in "{timeframe}"'
        )

    return ParsedTimeframe(unit=unit, n=n, ms=n * _UNIT_MS[unit])


def timeframe_to_ms(timeframe: str) -> int:
    """Convert a timeframe string to its duration in milliseconds."""
    return parse_timeframe(timeframe).ms


def bucket_timestamp(ts: float, tf_ms: float) -> int:
    """Snap a timestamp to the start of its timeframe bucket.

    Example:
        >>> bucket_timestamp(1735690261234, 60_000)
        1735690260000
    """
    if isinstance(ts, bool) or not isinstance(ts, (int, float)) or not math.isfinite(ts) or ts < 0:
        raise InvalidTimestamp(f"Invalid timestamp: {ts}")
    if isinstance(tf_ms, bool) or not isinstance(tf_ms, (int, float)) or not math.isfinite(tf_ms) or tf_ms <= 0:
        raise InvalidDuration(f"Invalid timeframe ms: {tf_ms}")
    if isinstance(ts, int) and isinstance(tf_ms, int):
        return (ts // tf_ms) * tf_ms
    return int(math.floor(ts / tf_ms) * tf_ms)


def is_bucket_aligned(ts: float, tf_ms: float) -> bool:
    """True if ``ts`` sits exactly on a bucket boundary."""
    return ts == bucket_timestamp(ts, tf_ms)


def assert_bucket_aligned(ts: float, tf_ms: float, context: Optional[str] = None) -> None:
    """Raise AlignmentError unless ``ts`` sits exactly on a bucket boundary.

    Args:
        ts: Timestamp in epoch milliseconds
        tf_ms: Timeframe duration in milliseconds
        context: Role of the timestamp, included in the error message
    """
    bucketed = bucket_timestamp(ts, tf_ms)
    if ts != bucketed:
        raise AlignmentError(ts=ts, tf_ms=int(tf_ms), bucketed=bucketed, context=context)
