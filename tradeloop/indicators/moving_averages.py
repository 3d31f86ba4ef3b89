"""Moving averages and MACD.

All functions return None (or None-padded series) when history is
insufficient; composites propagate absence instead of treating it as zero.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence


@dataclass(frozen=True)
class MacdResult:
    """Latest MACD values; each term is None when undefined."""

    macd: Optional[float]
    signal: Optional[float]
    histogram: Optional[float]

    @property
    def is_complete(self) -> bool:
        return self.macd is not None and self.signal is not None and self.histogram is not None


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def sma(values: Sequence[float], period: int) -> Optional[float]:
    """Simple moving average of the trailing ``period`` values, rounded to 6 dp."""
    if period <= 0 or len(values) < period:
        return None
    window = values[len(values) - period:]
    return round(sum(window) / period, 6)


def ema(values: Sequence[float], length: int) -> Optional[float]:
    """Exponential moving average seeded with the SMA of the first ``length`` values.

    Args:
        values: Values, oldest first
        length: EMA length (multiplier is 2 / (length + 1))

    Returns:
        Latest EMA value, or None if fewer than ``length`` values
    """
    if length <= 0 or len(values) < length:
        return None

    multiplier = 2 / (length + 1)
    value = _mean(values[:length])
    for x in values[length:]:
        value = (x - value) * multiplier + value
    return value


def ema_series(values: Sequence[float], length: int) -> List[Optional[float]]:
    """EMA aligned with ``values``; None before index ``length - 1``."""
    series: List[Optional[float]] = [None] * len(values)
    if length <= 0 or len(values) < length:
        return series

    multiplier = 2 / (length + 1)
    value = _mean(values[:length])
    series[length - 1] = value
    for i in range(length, len(values)):
        value = (values[i] - value) * multiplier + value
        series[i] = value
    return series


def macd_series(
    closes: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> List[MacdResult]:
    """Per-index MACD, signal and histogram aligned with ``closes``.

    The signal line is the EMA of the defined MACD values; it becomes defined
    once ``signal`` MACD values exist.
    """
    if not closes or fast <= 0 or slow <= 0 or signal <= 0:
        return [MacdResult(None, None, None) for _ in closes]

    fast_series = ema_series(closes, fast)
    slow_series = ema_series(closes, slow)
    macd_line: List[Optional[float]] = [
        f - s if f is not None and s is not None else None
        for f, s in zip(fast_series, slow_series)
    ]

    defined_idx = [i for i, v in enumerate(macd_line) if v is not None]
    signal_line: List[Optional[float]] = [None] * len(closes)
    defined_signal = ema_series([macd_line[i] for i in defined_idx], signal)
    for i, value in zip(defined_idx, defined_signal):
        signal_line[i] = value

    results = []
    for m, s in zip(macd_line, signal_line):
        histogram = m - s if m is not None and s is not None else None
        results.append(MacdResult(macd=m, signal=s, histogram=histogram))
    return results


def macd(
    closes: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MacdResult:
    """Latest MACD: ``EMA(fast) - EMA(slow)``, its signal EMA and the histogram."""
    if not closes or fast <= 0 or slow <= 0 or signal <= 0:
        return MacdResult(None, None, None)

    fast_series = ema_series(closes, fast)
    slow_series = ema_series(closes, slow)
    macd_values = [
        f - s for f, s in zip(fast_series, slow_series)
        if f is not None and s is not None
    ]
    latest_macd = macd_values[-1] if macd_values else None
    signal_value = ema(macd_values, signal) if len(macd_values) >= signal else None
    histogram = (
        latest_macd - signal_value
        if latest_macd is not None and signal_value is not None
        else None
    )
    return MacdResult(macd=latest_macd, signal=signal_value, histogram=histogram)
