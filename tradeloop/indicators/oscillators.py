"""RSI and ATR with Wilder smoothing."""
from typing import List, Optional, Sequence


def rsi_series(values: Sequence[float], period: int = 14) -> List[float]:
    """RSI for every index from ``period`` onwards.

    Average gain/loss are seeded over the first ``period`` deltas and then
    smoothed with ``avg' = (avg * (period - 1) + new) / period``. RSI is 100
    when the average loss is zero. Values are rounded to 2 dp.

    Returns:
        ``len(values) - period`` values, or an empty list on short input
        or a non-positive period
    """
    if period <= 0 or len(values) < period + 1:
        return []

    gains = 0.0
    losses = 0.0
    for i in range(1, period + 1):
        change = values[i] - values[i - 1]
        if change >= 0:
            gains += change
        else:
            losses -= change

    avg_gain = gains / period
    avg_loss = losses / period
    result: List[float] = []

    for i in range(period, len(values)):
        if i > period:
            change = values[i] - values[i - 1]
            avg_gain = (avg_gain * (period - 1) + max(change, 0.0)) / period
            avg_loss = (avg_loss * (period - 1) + max(-change, 0.0)) / period

        if avg_loss == 0:
            value = 100.0
        else:
            value = 100 - 100 / (1 + avg_gain / avg_loss)
        result.append(round(value, 2))

    return result


def rsi(values: Sequence[float], period: int = 14) -> Optional[float]:
    """Latest RSI, or None if fewer than ``period + 1`` values."""
    series = rsi_series(values, period)
    return series[-1] if series else None


def _true_ranges(candles: Sequence) -> List[float]:
    ranges = []
    for prev, current in zip(candles, candles[1:]):
        ranges.append(max(
            current.high - current.low,
            abs(current.high - prev.close),
            abs(current.low - prev.close),
        ))
    return ranges


def calculate_atr_series(candles: Sequence, period: int = 14) -> List[float]:
    """ATR for every candle from index ``period`` onwards, rounded to 6 dp.

    Candles may be Candle models or any objects with high/low/close.
    """
    if period <= 0 or len(candles) < period + 1:
        return []

    true_ranges = _true_ranges(candles)
    atr = sum(true_ranges[:period]) / period
    series = [round(atr, 6)]
    for tr in true_ranges[period:]:
        atr = (atr * (period - 1) + tr) / period
        series.append(round(atr, 6))
    return series


def calculate_atr(candles: Sequence, period: int = 14) -> Optional[float]:
    """Average True Range (Wilder), or None if fewer than ``period + 1`` candles."""
    series = calculate_atr_series(candles, period)
    return series[-1] if series else None
