"""Indicator library.

Pure functions over ordered sequences:
- Moving averages: sma, ema, ema_series
- MACD: macd, macd_series
- Oscillators: rsi, rsi_series, calculate_atr, calculate_atr_series
- VWAP: daily / weekly / monthly / rolling, delta-gamma
- Forecast: AR(4) least-squares forecast
"""

from tradeloop.indicators.forecast import Ar4Fit, ar4_forecast, fit_ar4
from tradeloop.indicators.moving_averages import (
    MacdResult,
    ema,
    ema_series,
    macd,
    macd_series,
    sma,
)
from tradeloop.indicators.oscillators import (
    calculate_atr,
    calculate_atr_series,
    rsi,
    rsi_series,
)
from tradeloop.indicators.vwap import (
    DeltaGammaResult,
    calculate_daily_vwap,
    calculate_monthly_vwap,
    calculate_rolling_vwap,
    calculate_weekly_vwap,
    compute_delta_gamma,
)

__all__ = [
    "sma",
    "ema",
    "ema_series",
    "macd",
    "macd_series",
    "MacdResult",
    "rsi",
    "rsi_series",
    "calculate_atr",
    "calculate_atr_series",
    "calculate_daily_vwap",
    "calculate_weekly_vwap",
    "calculate_monthly_vwap",
    "calculate_rolling_vwap",
    "compute_delta_gamma",
    "DeltaGammaResult",
    "ar4_forecast",
    "fit_ar4",
    "Ar4Fit",
]
