"""Anchored and rolling VWAP plus price/VWAP delta-gamma.

Anchored variants take the session of the newest candle (UTC day, week
starting Monday 00:00, or calendar month) and average every candle at or
after that anchor. Candles with non-positive volume are ignored.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional, Sequence

from tradeloop.core.timeframes import DAY_MS

Sign = Literal["positive", "negative", "neutral"]


def _typical_price(candle) -> float:
    return (candle.high + candle.low + candle.close) / 3


def _compute_vwap(candles: Sequence) -> Optional[float]:
    if not candles:
        return None

    pv_sum = 0.0
    volume_sum = 0.0
    for candle in candles:
        if candle.volume <= 0:
            continue
        pv_sum += _typical_price(candle) * candle.volume
        volume_sum += candle.volume

    if volume_sum <= 0:
        return None
    return pv_sum / volume_sum


def _to_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _start_of_utc_day(ts: int) -> int:
    return (ts // DAY_MS) * DAY_MS


def _start_of_utc_week(ts: int) -> int:
    day = datetime.fromtimestamp(ts / 1000, tz=timezone.utc)
    monday = day.date() - timedelta(days=day.weekday())
    return _to_ms(datetime(monday.year, monday.month, monday.day, tzinfo=timezone.utc))


def _start_of_utc_month(ts: int) -> int:
    day = datetime.fromtimestamp(ts / 1000, tz=timezone.utc)
    return _to_ms(datetime(day.year, day.month, 1, tzinfo=timezone.utc))


def _anchored_vwap(candles: Sequence, anchor) -> Optional[float]:
    if not candles:
        return None
    start = anchor(candles[-1].timestamp)
    return _compute_vwap([c for c in candles if c.timestamp >= start])


def calculate_daily_vwap(candles: Sequence) -> Optional[float]:
    """VWAP since 00:00 UTC of the newest candle's day."""
    return _anchored_vwap(candles, _start_of_utc_day)


def calculate_weekly_vwap(candles: Sequence) -> Optional[float]:
    """VWAP since Monday 00:00 UTC of the newest candle's week."""
    return _anchored_vwap(candles, _start_of_utc_week)


def calculate_monthly_vwap(candles: Sequence) -> Optional[float]:
    """VWAP since the first of the newest candle's month (UTC)."""
    return _anchored_vwap(candles, _start_of_utc_month)


def calculate_rolling_vwap(candles: Sequence, period: int) -> Optional[float]:
    """VWAP over the trailing ``period`` candles."""
    if period <= 0 or len(candles) < period:
        return None
    return _compute_vwap(candles[-period:])


# =============================================================================
# Delta / Gamma
# =============================================================================

@dataclass(frozen=True)
class DeltaGammaResult:
    """Distance of price from VWAP (delta) and its change (gamma)."""

    delta: Optional[float]
    delta_magnitude: Optional[float]
    delta_sign: Sign
    gamma: Optional[float]
    gamma_magnitude: Optional[float]
    gamma_sign: Sign
    gamma_flipped: bool
    gamma_flip_direction: Optional[Literal["bullish", "bearish"]]


def _classify_sign(value: Optional[float]) -> Sign:
    if value is None or value == 0:
        return "neutral"
    return "positive" if value > 0 else "negative"


def compute_delta_gamma(
    price: Optional[float],
    vwap: Optional[float],
    prev_delta: Optional[float] = None,
) -> DeltaGammaResult:
    """Compute delta = price - vwap and gamma = delta - prev_delta.

    A flip is flagged when delta changes sign between two non-neutral
    readings; its direction is bullish when delta turned positive.
    """
    if price is None or vwap is None:
        return DeltaGammaResult(
            delta=None,
            delta_magnitude=None,
            delta_sign="neutral",
            gamma=None,
            gamma_magnitude=None,
            gamma_sign="neutral",
            gamma_flipped=False,
            gamma_flip_direction=None,
        )

    delta = price - vwap
    gamma = None if prev_delta is None else delta - prev_delta
    delta_sign = _classify_sign(delta)
    prev_sign = _classify_sign(prev_delta)
    flipped = (
        prev_delta is not None
        and prev_sign != delta_sign
        and delta_sign != "neutral"
        and prev_sign != "neutral"
    )

    return DeltaGammaResult(
        delta=delta,
        delta_magnitude=abs(delta),
        delta_sign=delta_sign,
        gamma=gamma,
        gamma_magnitude=None if gamma is None else abs(gamma),
        gamma_sign=_classify_sign(gamma),
        gamma_flipped=flipped,
        gamma_flip_direction=("bullish" if delta_sign == "positive" else "bearish") if flipped else None,
    )
