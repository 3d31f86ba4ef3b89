"""Market data: multi-timeframe candle cache and live candle fetcher."""

from tradeloop.data.cache import CandleFetcher, MultiTimeframeCache
from tradeloop.data.fetcher import CcxtCandleFetcher

__all__ = [
    "CandleFetcher",
    "MultiTimeframeCache",
    "CcxtCandleFetcher",
]
