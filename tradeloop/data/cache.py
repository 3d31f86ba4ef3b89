"""Multi-timeframe candle cache.

Holds a bounded, time-ascending window of candles per tracked timeframe for
one symbol. The same cache serves live trading (pulling from an injected
fetcher on ``refresh_all``) and replay/backtests (fed through
``append_candles``), so strategy code never knows which one it is reading.
"""
import asyncio
import time
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import structlog

from tradeloop.core.exceptions import UnknownTimeframe
from tradeloop.core.models import Candle, assert_candle_matches
from tradeloop.core.timeframes import assert_bucket_aligned, timeframe_to_ms

logger = structlog.get_logger(__name__)

DEFAULT_LIMIT = 300


class CandleFetcher(Protocol):
    """Source of closed candles, ascending and bucket-aligned."""

    async def __call__(
        self,
        symbol: str,
        timeframe: str,
        limit: int,
        since: Optional[int] = None,
    ) -> List[Candle]:
        ...


def _now_ms() -> int:
    return int(time.time() * 1000)


class MultiTimeframeCache:
    """Bounded per-timeframe candle windows for a single symbol.

    Ingestion rejects misaligned candles, merges by timestamp (last write
    wins), keeps ascending order and evicts the oldest candles once a window
    exceeds ``limit``.
    """

    def __init__(
        self,
        symbol: str,
        timeframes: Iterable[str],
        fetcher: Optional[CandleFetcher] = None,
        limit: int = DEFAULT_LIMIT,
        max_age_ms: Optional[int] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.symbol = symbol
        self.timeframes: Tuple[str, ...] = tuple(dict.fromkeys(timeframes))
        self.fetcher = fetcher
        self.limit = max(int(limit), 1)
        self.max_age_ms = max_age_ms
        self._clock = clock

        # Validates every timeframe up front
        self._tf_ms: Dict[str, int] = {tf: timeframe_to_ms(tf) for tf in self.timeframes}
        self._series: Dict[str, List[Candle]] = {tf: [] for tf in self.timeframes}
        self._fetched_at: Dict[str, int] = {}

        logger.debug(
            "mtf_cache.created",
            symbol=symbol,
            timeframes=list(self.timeframes),
            limit=self.limit,
            live=fetcher is not None,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def _require(self, timeframe: str) -> List[Candle]:
        if timeframe not in self._series:
            raise UnknownTimeframe(timeframe, self.timeframes)
        return self._series[timeframe]

    def get_candles(self, timeframe: str) -> Tuple[Candle, ...]:
        """Candles for ``timeframe``, oldest first (a copy)."""
        return tuple(self._require(timeframe))

    def get_latest_candle(self, timeframe: str) -> Optional[Candle]:
        """Newest candle for ``timeframe``, or None when empty."""
        candles = self._require(timeframe)
        return candles[-1] if candles else None

    def has_candles(self, timeframe: str) -> bool:
        return bool(self._require(timeframe))

    def timeframe_ms(self, timeframe: str) -> int:
        self._require(timeframe)
        return self._tf_ms[timeframe]

    def __len__(self) -> int:
        return sum(len(candles) for candles in self._series.values())

    # =========================================================================
    # Ingestion
    # =========================================================================

    def append_candles(self, timeframe: str, candles: Sequence[Candle]) -> None:
        """Merge ``candles`` into the window for ``timeframe``.

        Raises:
            UnknownTimeframe: If ``timeframe`` is not tracked
            AlignmentError: If any candle is not on a bucket boundary
            SeriesMismatch: If any candle has another symbol or timeframe
        """
        existing = self._require(timeframe)
        if not candles:
            return

        tf_ms = self._tf_ms[timeframe]
        for candle in candles:
            assert_candle_matches(candle, self.symbol, timeframe, tf_ms, f"{timeframe} candle")
            assert_bucket_aligned(candle.timestamp, tf_ms, f"{timeframe} candle")

        merged: Dict[int, Candle] = {c.timestamp: c for c in existing}
        for candle in candles:
            merged[candle.timestamp] = candle

        ordered = [merged[ts] for ts in sorted(merged)]
        evicted = max(len(ordered) - self.limit, 0)
        self._series[timeframe] = ordered[evicted:]

        if evicted:
            logger.debug(
                "mtf_cache.evicted",
                symbol=self.symbol,
                timeframe=timeframe,
                evicted=evicted,
            )

    def append_candle(self, timeframe: str, candle: Candle) -> None:
        """Merge a single candle into the window for ``timeframe``."""
        self.append_candles(timeframe, [candle])

    def set_candles(self, timeframe: str, candles: Sequence[Candle]) -> None:
        """Replace the window for ``timeframe`` with ``candles``."""
        self._require(timeframe)
        self._series[timeframe] = []
        self.append_candles(timeframe, candles)

    # =========================================================================
    # Refresh
    # =========================================================================

    def _is_fresh(self, timeframe: str, now: int) -> bool:
        if self.max_age_ms is None:
            return False
        fetched_at = self._fetched_at.get(timeframe)
        return fetched_at is not None and now - fetched_at < self.max_age_ms

    async def _refresh(self, timeframe: str, now: int) -> None:
        candles = await self.fetcher(self.symbol, timeframe, self.limit)
        self.append_candles(timeframe, candles)
        self._fetched_at[timeframe] = now
        logger.debug(
            "mtf_cache.refreshed",
            symbol=self.symbol,
            timeframe=timeframe,
            fetched=len(candles),
            cached=len(self._series[timeframe]),
        )

    async def refresh_all(self) -> None:
        """Pull fresh candles for every tracked timeframe.

        No-op when the cache has no fetcher (replay-driven). Fetcher errors
        propagate to the caller.
        """
        if self.fetcher is None:
            return

        now = self._clock()
        stale = [tf for tf in self.timeframes if not self._is_fresh(tf, now)]
        if not stale:
            return
        await asyncio.gather(*(self._refresh(tf, now) for tf in stale))
