"""Tick snapshot: the immutable market view a strategy evaluates each tick."""
from typing import Dict, Literal, Mapping, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel, ConfigDict, Field

from tradeloop.core.models import Candle, assert_candle_matches
from tradeloop.core.timeframes import (assert_bucket_aligned, bucket_timestamp,
                                       timeframe_to_ms)

logger = structlog.get_logger(__name__)

CandleSource = Literal["ws", "rest", "poll", "replay"]


class TickSnapshot(BaseModel):
    """Multi-timeframe view of one symbol at one execution candle.

    Attributes:
        symbol: Trading symbol (e.g. "BTC/USDT")
        signal_venue: Venue providing the market data (e.g. "binance")
        execution_timeframe: Timeframe the strategy acts on
        execution_candle: Candle that triggered this tick
        series: Candle history per timeframe, oldest first
        as_of_ts: Bucketed timestamp of the execution candle
        timeframe_ms: Duration in milliseconds of every timeframe present
        source_by_tf: Where each series came from, when known
        gap_filled_by_tf: Whether gaps were filled per timeframe, when known
        arrival_delay_ms: Delay between candle close and arrival, when known
    """
    model_config = ConfigDict(frozen=True)

    symbol: str
    signal_venue: str
    execution_timeframe: str
    execution_candle: Candle
    series: Dict[str, Tuple[Candle, ...]] = Field(default_factory=dict)
    as_of_ts: int
    timeframe_ms: Dict[str, int] = Field(default_factory=dict)
    source_by_tf: Optional[Dict[str, CandleSource]] = None
    gap_filled_by_tf: Optional[Dict[str, bool]] = None
    arrival_delay_ms: Optional[int] = None

    def candles(self, timeframe: str) -> Tuple[Candle, ...]:
        """Series for ``timeframe``, empty when absent."""
        return self.series.get(timeframe, ())

    def closes(self, timeframe: str) -> list:
        return [c.close for c in self.candles(timeframe)]


def build_tick_snapshot(
    symbol: str,
    signal_venue: str,
    execution_timeframe: str,
    execution_candle: Candle,
    series: Mapping[str, Sequence[Candle]],
    arrival_delay_ms: Optional[int] = None,
    source_by_tf: Optional[Mapping[str, CandleSource]] = None,
    gap_filled_by_tf: Optional[Mapping[str, bool]] = None,
) -> TickSnapshot:
    """Build a validated TickSnapshot.

    Every timeframe string (execution plus series keys) is parsed, and the
    execution candle must sit on its timeframe boundary.

    Raises:
        InvalidTimeframe: If any timeframe string is malformed
        AlignmentError: If the execution candle is misaligned
            (context "executionCandle")
        SeriesMismatch: If the execution candle or any series candle has
            another symbol or timeframe
    """
    timeframe_ms: Dict[str, int] = {execution_timeframe: timeframe_to_ms(execution_timeframe)}
    for tf in series:
        if tf not in timeframe_ms:
            timeframe_ms[tf] = timeframe_to_ms(tf)

    execution_tf_ms = timeframe_ms[execution_timeframe]
    assert_bucket_aligned(execution_candle.timestamp, execution_tf_ms, "executionCandle")
    assert_candle_matches(
        execution_candle, symbol, execution_timeframe, execution_tf_ms, "executionCandle"
    )
    frozen_series = {tf: tuple(candles) for tf, candles in series.items()}
    for tf, candles in frozen_series.items():
        for candle in candles:
            assert_candle_matches(candle, symbol, tf, timeframe_ms[tf], f"{tf} series")
    as_of_ts = bucket_timestamp(execution_candle.timestamp, execution_tf_ms)

    return TickSnapshot(
        symbol=symbol,
        signal_venue=signal_venue,
        execution_timeframe=execution_timeframe,
        execution_candle=execution_candle,
        series=frozen_series,
        as_of_ts=as_of_ts,
        timeframe_ms=timeframe_ms,
        source_by_tf=dict(source_by_tf) if source_by_tf is not None else None,
        gap_filled_by_tf=dict(gap_filled_by_tf) if gap_filled_by_tf is not None else None,
        arrival_delay_ms=arrival_delay_ms,
    )


def snapshot_from_cache(
    cache,
    signal_venue: str,
    execution_timeframe: str,
    execution_candle: Optional[Candle] = None,
    source: Optional[CandleSource] = None,
) -> Optional[TickSnapshot]:
    """Build a snapshot from every series tracked by a MultiTimeframeCache.

    Uses the latest execution-timeframe candle unless one is given.
    Returns None when the cache holds no execution candle yet.
    """
    if execution_candle is None:
        execution_candle = cache.get_latest_candle(execution_timeframe)
    if execution_candle is None:
        logger.debug(
            "tick_snapshot.no_execution_candle",
            symbol=cache.symbol,
            timeframe=execution_timeframe,
        )
        return None

    series = {tf: cache.get_candles(tf) for tf in cache.timeframes}
    return build_tick_snapshot(
        symbol=cache.symbol,
        signal_venue=signal_venue,
        execution_timeframe=execution_timeframe,
        execution_candle=execution_candle,
        series=series,
        source_by_tf={tf: source for tf in series} if source else None,
    )
