"""Unit tests for the indicator library."""
from datetime import datetime, timezone

import pytest

from tradeloop.core.models import Candle
from tradeloop.core.timeframes import DAY_MS, HOUR_MS
from tradeloop.indicators import (calculate_atr, calculate_atr_series,
                                  calculate_daily_vwap, calculate_monthly_vwap,
                                  calculate_rolling_vwap,
                                  calculate_weekly_vwap, compute_delta_gamma,
                                  ema, ema_series, macd, macd_series, rsi,
                                  rsi_series, sma)


def _ts(year, month, day, hour=0):
    return int(datetime(year, month, day, hour, tzinfo=timezone.utc).timestamp() * 1000)


def _candle(ts, high, low, close, volume=1.0):
    return Candle(
        symbol="BTC/USDT",
        timeframe="1h",
        timestamp=ts,
        open=close,
        high=high,
        low=low,
        close=close,
        volume=volume,
    )


# =============================================================================
# Moving Averages
# =============================================================================

class TestMovingAverages:
    """Test SMA, EMA and their series."""

    def test_sma(self):
        assert sma([1, 2, 3, 4, 5], 3) == 4.0

    def test_sma_rounds_to_six_places(self):
        assert sma([1, 1, 2], 3) == 1.333333

    def test_sma_short_input(self):
        assert sma([1, 2], 3) is None
        assert sma([1, 2], 0) is None

    def test_ema_seeded_with_sma(self):
        assert ema([1, 2, 3], 3) == pytest.approx(2.0)

    def test_ema_recurrence(self):
        # seed 2.0, multiplier 0.5: (4 - 2) * 0.5 + 2 = 3.0
        assert ema([1, 2, 3, 4], 3) == pytest.approx(3.0)

    def test_ema_short_input(self):
        assert ema([1, 2], 3) is None

    def test_ema_series_padding(self):
        series = ema_series([1, 2, 3, 4], 3)
        assert series[:2] == [None, None]
        assert series[2] == pytest.approx(2.0)
        assert series[3] == pytest.approx(3.0)

    def test_ema_series_matches_ema(self):
        values = [float(v) for v in range(1, 40)]
        assert ema_series(values, 10)[-1] == pytest.approx(ema(values, 10))


class TestMacd:
    """Test MACD and MACD series."""

    def test_insufficient_history(self):
        result = macd([1.0] * 10)
        assert result.macd is None
        assert result.signal is None
        assert result.histogram is None
        assert not result.is_complete

    def test_signal_needs_enough_macd_values(self):
        # 26 closes give one MACD value; signal needs 9
        result = macd([float(v) for v in range(26)])
        assert result.macd is not None
        assert result.signal is None
        assert result.histogram is None

    def test_constant_series_is_zero(self):
        result = macd([50.0] * 40)
        assert result.is_complete
        assert result.macd == pytest.approx(0.0)
        assert result.signal == pytest.approx(0.0)
        assert result.histogram == pytest.approx(0.0)

    def test_uptrend_is_positive(self):
        result = macd([100.0 + i for i in range(60)])
        assert result.macd > 0

    def test_series_last_matches_latest(self):
        closes = [100 + (i % 7) * 1.5 - i * 0.2 for i in range(80)]
        latest = macd(closes)
        series = macd_series(closes)
        assert len(series) == len(closes)
        assert series[-1].macd == pytest.approx(latest.macd)
        assert series[-1].signal == pytest.approx(latest.signal)
        assert series[-1].histogram == pytest.approx(latest.histogram)

    def test_series_first_defined_index(self):
        series = macd_series([float(v) for v in range(40)], 12, 26, 9)
        assert series[24].macd is None
        assert series[25].macd is not None
        assert series[32].signal is None
        assert series[33].signal is not None

    def test_invalid_lengths(self):
        assert not macd([1.0, 2.0], fast=0).is_complete
        assert macd_series([], 12, 26, 9) == []


# =============================================================================
# Oscillators
# =============================================================================

class TestRsi:
    """Test Wilder RSI."""

    def test_short_input(self):
        assert rsi([1, 2, 3], 14) is None
        assert rsi_series([1, 2, 3], 14) == []

    def test_all_gains_is_100(self):
        assert rsi([float(v) for v in range(20)], 14) == 100.0

    def test_all_losses_is_zero(self):
        assert rsi([float(v) for v in range(20, 0, -1)], 14) == 0.0

    def test_bounded(self):
        values = [100 + ((i * 37) % 11) - 5 for i in range(50)]
        for value in rsi_series(values, 14):
            assert 0 <= value <= 100

    def test_series_length(self):
        assert len(rsi_series([float(v) for v in range(30)], 14)) == 16

    def test_known_value(self):
        # gains of 1 on alternate steps and losses of 0.5 on the others
        values = [10, 11, 10.5, 11.5, 11]
        # avg gain = 2/4 = 0.5, avg loss = 1/4 = 0.25, rs = 2
        assert rsi(values, 4) == pytest.approx(66.67)

    def test_non_positive_period(self):
        assert rsi([1, 2, 3], 0) is None
        assert rsi_series([1, 2, 3], -1) == []


class TestAtr:
    """Test Wilder ATR."""

    def _candles(self, n, spread=2.0):
        return [_candle(i * HOUR_MS, 100 + spread / 2, 100 - spread / 2, 100) for i in range(n)]

    def test_short_input(self):
        assert calculate_atr(self._candles(14), 14) is None

    def test_constant_range(self):
        assert calculate_atr(self._candles(20), 14) == pytest.approx(2.0)

    def test_gap_uses_previous_close(self):
        candles = [
            _candle(0, 101, 99, 100),
            _candle(HOUR_MS, 111, 109, 110),
        ]
        # true range = max(2, |111 - 100|, |109 - 100|) = 11
        assert calculate_atr(candles, 1) == pytest.approx(11.0)

    def test_series_length(self):
        assert len(calculate_atr_series(self._candles(20), 14)) == 6


# =============================================================================
# VWAP
# =============================================================================

class TestVwap:
    """Test anchored and rolling VWAP."""

    def test_weighted_typical_price(self):
        candles = [
            _candle(0, 12, 9, 9, volume=1),   # typical 10
            _candle(HOUR_MS, 21, 19, 20, volume=3),  # typical 20
        ]
        assert calculate_rolling_vwap(candles, 2) == pytest.approx((10 + 60) / 4)

    def test_empty_and_zero_volume(self):
        assert calculate_daily_vwap([]) is None
        assert calculate_rolling_vwap([_candle(0, 1, 1, 1, volume=0)], 1) is None

    def test_zero_volume_candles_ignored(self):
        candles = [
            _candle(0, 10, 10, 10, volume=0),
            _candle(HOUR_MS, 20, 20, 20, volume=2),
        ]
        assert calculate_rolling_vwap(candles, 2) == pytest.approx(20.0)

    def test_rolling_short_input(self):
        assert calculate_rolling_vwap([_candle(0, 1, 1, 1)], 2) is None

    def test_daily_anchor(self):
        candles = [
            _candle(_ts(2025, 1, 1, 23), 50, 50, 50),
            _candle(_ts(2025, 1, 2, 0), 10, 10, 10),
            _candle(_ts(2025, 1, 2, 1), 20, 20, 20),
        ]
        assert calculate_daily_vwap(candles) == pytest.approx(15.0)

    def test_weekly_anchor_is_monday(self):
        candles = [
            _candle(_ts(2025, 1, 5, 12), 50, 50, 50),  # Sunday
            _candle(_ts(2025, 1, 6, 0), 10, 10, 10),   # Monday
            _candle(_ts(2025, 1, 8, 0), 30, 30, 30),   # Wednesday
        ]
        assert calculate_weekly_vwap(candles) == pytest.approx(20.0)

    def test_monthly_anchor(self):
        candles = [
            _candle(_ts(2025, 1, 31, 0), 50, 50, 50),
            _candle(_ts(2025, 2, 1, 0), 10, 10, 10),
            _candle(_ts(2025, 2, 14, 0), 20, 20, 20),
        ]
        assert calculate_monthly_vwap(candles) == pytest.approx(15.0)

    def test_day_boundary_constant(self):
        assert _ts(2025, 1, 2) - _ts(2025, 1, 1) == DAY_MS


class TestDeltaGamma:
    """Test price/VWAP delta and gamma."""

    def test_missing_inputs_propagate(self):
        result = compute_delta_gamma(None, 100.0)
        assert result.delta is None
        assert result.gamma is None
        assert result.delta_sign == "neutral"
        assert not result.gamma_flipped

    def test_delta_without_previous(self):
        result = compute_delta_gamma(105.0, 100.0)
        assert result.delta == pytest.approx(5.0)
        assert result.delta_magnitude == pytest.approx(5.0)
        assert result.delta_sign == "positive"
        assert result.gamma is None
        assert result.gamma_sign == "neutral"

    def test_bullish_flip(self):
        result = compute_delta_gamma(102.0, 100.0, prev_delta=-3.0)
        assert result.gamma == pytest.approx(5.0)
        assert result.gamma_sign == "positive"
        assert result.gamma_flipped
        assert result.gamma_flip_direction == "bullish"

    def test_bearish_flip(self):
        result = compute_delta_gamma(98.0, 100.0, prev_delta=1.0)
        assert result.gamma_flipped
        assert result.gamma_flip_direction == "bearish"

    def test_no_flip_from_neutral(self):
        result = compute_delta_gamma(101.0, 100.0, prev_delta=0.0)
        assert not result.gamma_flipped
        assert result.gamma_flip_direction is None
