"""MACD trend filter confirmed by an AR(4) forecast of the MACD histogram.

Entry: MACD above its signal line and the forecast histogram above
``min_forecast``. Exit: MACD crosses below the signal or the forecast turns
negative.
"""
from typing import Any, Dict, Sequence

from pydantic import BaseModel, Field

from tradeloop.core.models import Candle, IntentType, PositionSide, TradeIntent
from tradeloop.indicators.forecast import MIN_OBSERVATIONS, ar4_forecast
from tradeloop.indicators.moving_averages import macd_series
from tradeloop.strategies.base import BaseStrategy


class MacdAr4Config(BaseModel):
    """MACD+AR4 strategy parameters."""

    ema_fast: int = Field(default=12, gt=0)
    ema_slow: int = Field(default=26, gt=0)
    signal: int = Field(default=9, gt=0)
    # Number of recent histogram values the AR(4) model is fit on
    ar_window: int = Field(default=20)
    min_forecast: float = Field(default=0.0)


class MacdAr4Strategy(BaseStrategy):
    """Long-only MACD strategy gated by a histogram forecast."""

    def __init__(self, config: MacdAr4Config = None, name: str = "macd_ar4"):
        super().__init__(name)
        self.config = config or MacdAr4Config()

    def get_required_data(self) -> Dict[str, Any]:
        return {
            'timeframes': ['1m'],
            'min_bars': self.config.ema_slow + self.config.signal + self.config.ar_window,
        }

    def decide(self, candles: Sequence[Candle], position: PositionSide = PositionSide.FLAT) -> TradeIntent:
        cfg = self.config
        if len(candles) < max(cfg.ema_slow, MIN_OBSERVATIONS):
            return self._no_action(candles, "insufficient_candles")

        closes = [c.close for c in candles]
        series = macd_series(closes, cfg.ema_fast, cfg.ema_slow, cfg.signal)
        latest = series[-1]
        if not latest.is_complete:
            return self._no_action(candles, "macd_unavailable")

        if cfg.ar_window < MIN_OBSERVATIONS:
            return self._no_action(candles, "ar_window_too_small")

        histogram = [r.histogram for r in series if r.histogram is not None]
        forecast = ar4_forecast(histogram[-cfg.ar_window:])
        if forecast is None:
            return self._no_action(candles, "forecast_unavailable")

        symbol = candles[-1].symbol
        if position == PositionSide.LONG and (latest.macd < latest.signal or forecast < 0):
            return TradeIntent(
                symbol=symbol,
                intent=IntentType.CLOSE_LONG,
                reason="macd_down_or_forecast_negative",
            )

        if forecast <= cfg.min_forecast:
            return self._no_action(candles, "forecast_below_threshold")

        if position != PositionSide.LONG and latest.macd > latest.signal:
            return TradeIntent(
                symbol=symbol,
                intent=IntentType.OPEN_LONG,
                reason="macd_up_and_forecast_positive",
            )

        return self._no_action(candles, "holding_long" if position == PositionSide.LONG else "no_signal")
