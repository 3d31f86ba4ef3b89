"""Trading strategies for tradeloop.

- BaseStrategy: pure decider interface (candles + position side -> TradeIntent)
- MacdAr4Strategy: MACD trend filter confirmed by an AR(4) histogram forecast
"""

from tradeloop.strategies.base import BaseStrategy
from tradeloop.strategies.macd_ar4 import MacdAr4Config, MacdAr4Strategy

__all__ = [
    "BaseStrategy",
    "MacdAr4Config",
    "MacdAr4Strategy",
]
