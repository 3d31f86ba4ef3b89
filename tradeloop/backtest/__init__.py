"""Backtesting: historical candle loading and the replay tick loop."""
from tradeloop.backtest.data_loader import (candles_to_frame,
                                            download_candles,
                                            load_candles_csv,
                                            resample_candles,
                                            save_candles_csv)
from tradeloop.backtest.runner import BacktestResult, BacktestRunner, TickRecord

__all__ = [
    "BacktestResult",
    "BacktestRunner",
    "TickRecord",
    "candles_to_frame",
    "download_candles",
    "load_candles_csv",
    "resample_candles",
    "save_candles_csv",
]
