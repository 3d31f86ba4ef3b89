"""Live candle fetcher backed by ccxt ``fetch_ohlcv``."""
import time
from typing import Callable, List, Optional

import structlog

from tradeloop.core.models import Candle
from tradeloop.core.timeframes import bucket_timestamp, timeframe_to_ms
from tradeloop.exchange.ccxt_gateway import with_retry

logger = structlog.get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class CcxtCandleFetcher:
    """Fetch closed, bucket-aligned candles from a ccxt async exchange.

    Instances are callables matching the CandleFetcher protocol, so they can
    be handed straight to MultiTimeframeCache.

    Attributes:
        exchange: ccxt async exchange instance (owned by the caller)
        closed_only: Drop the still-forming newest candle
    """

    def __init__(
        self,
        exchange,
        closed_only: bool = True,
        clock: Callable[[], int] = _now_ms,
    ):
        self.exchange = exchange
        self.closed_only = closed_only
        self._clock = clock

    async def __call__(
        self,
        symbol: str,
        timeframe: str,
        limit: int,
        since: Optional[int] = None,
    ) -> List[Candle]:
        return await self.fetch(symbol, timeframe, limit, since)

    @with_retry()
    async def fetch(
        self,
        symbol: str,
        timeframe: str,
        limit: int,
        since: Optional[int] = None,
    ) -> List[Candle]:
        """Fetch up to ``limit`` candles, oldest first.

        Rows are ``[timestamp, open, high, low, close, volume]``; timestamps
        are snapped to their bucket and duplicates keep the last row.
        """
        tf_ms = timeframe_to_ms(timeframe)
        try:
            rows = await self.exchange.fetch_ohlcv(symbol, timeframe, since=since, limit=limit)
        except Exception as e:
            logger.error(
                "candle_fetcher.ohlcv_error",
                symbol=symbol,
                timeframe=timeframe,
                error=str(e),
            )
            raise

        now = self._clock()
        by_ts = {}
        for row in rows:
            ts = bucket_timestamp(int(row[0]), tf_ms)
            if self.closed_only and ts + tf_ms > now:
                continue
            by_ts[ts] = Candle(
                symbol=symbol,
                timeframe=timeframe,
                timestamp=ts,
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5] or 0.0),
            )

        candles = [by_ts[ts] for ts in sorted(by_ts)]
        logger.debug(
            "candle_fetcher.fetched",
            symbol=symbol,
            timeframe=timeframe,
            rows=len(rows),
            candles=len(candles),
        )
        return candles
