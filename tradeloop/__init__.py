"""tradeloop: candle-driven signal generation and order planning pipeline."""

__version__ = "0.1.0"
