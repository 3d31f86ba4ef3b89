"""
Historical candle loading for backtests.

Reads and writes OHLCV CSV files with pandas and resamples a base series
into higher timeframes so a single file can drive a multi-timeframe replay.
"""

import asyncio
from pathlib import Path
from typing import List, Sequence, Union

import pandas as pd
import structlog

from tradeloop.core.models import Candle
from tradeloop.core.timeframes import bucket_timestamp, timeframe_to_ms
from tradeloop.data.cache import CandleFetcher

logger = structlog.get_logger(__name__)

REQUIRED_COLUMNS = ("timestamp", "open", "high", "low", "close")
DOWNLOAD_BATCH = 1000


def _timestamps_to_ms(column: pd.Series) -> pd.Series:
    """Epoch milliseconds from numeric epochs or date strings (assumed UTC)."""
    if pd.api.types.is_numeric_dtype(column):
        return column.astype("int64")
    parsed = pd.to_datetime(column, utc=True)
    return (parsed - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(milliseconds=1)


def load_candles_csv(
    path: Union[str, Path],
    symbol: str,
    timeframe: str,
    align: bool = True,
) -> List[Candle]:
    """
    Load candles from a CSV file.

    Args:
        path: CSV with timestamp, open, high, low, close and optional volume
            columns; timestamp is epoch ms or an ISO date string
        symbol: Symbol to stamp on every candle
        timeframe: Timeframe of the rows
        align: Snap timestamps to their bucket start

    Returns:
        Candles sorted by timestamp; duplicate timestamps keep the last row

    Raises:
        ValueError: If required columns are missing, or a timestamp is off
            its bucket with ``align=False``
    """
    df = pd.read_csv(path)
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"CSV {path} is missing columns: {missing}")

    if "volume" not in df.columns:
        df["volume"] = 0.0

    tf_ms = timeframe_to_ms(timeframe)
    df["timestamp"] = _timestamps_to_ms(df["timestamp"])
    if align:
        df["timestamp"] = df["timestamp"].map(lambda ts: bucket_timestamp(int(ts), tf_ms))

    df = df.drop_duplicates(subset="timestamp", keep="last").sort_values("timestamp")

    candles = [
        Candle(
            symbol=symbol,
            timeframe=timeframe,
            timestamp=int(row.timestamp),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df.itertuples(index=False)
    ]

    logger.info(
        "data_loader.loaded",
        file=str(path),
        symbol=symbol,
        timeframe=timeframe,
        records=len(candles),
    )
    return candles


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """Candles as a DataFrame with one row per candle."""
    return pd.DataFrame(
        [
            {
                "timestamp": c.timestamp,
                "open": c.open,
                "high": c.high,
                "low": c.low,
                "close": c.close,
                "volume": c.volume,
            }
            for c in candles
        ],
        columns=["timestamp", "open", "high", "low", "close", "volume"],
    )


def save_candles_csv(candles: Sequence[Candle], path: Union[str, Path]) -> None:
    """Write candles to CSV (timestamp in epoch ms)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    candles_to_frame(candles).to_csv(path, index=False)
    logger.info("data_loader.cached", file=str(path), records=len(candles))


def resample_candles(candles: Sequence[Candle], timeframe: str) -> List[Candle]:
    """
    Aggregate base candles into ``timeframe`` buckets.

    Open is the first open, close the last close, high/low the extremes and
    volume the sum. The newest bucket may be partial.
    """
    if not candles:
        return []

    tf_ms = timeframe_to_ms(timeframe)
    df = candles_to_frame(candles)
    df["bucket"] = df["timestamp"].map(lambda ts: bucket_timestamp(int(ts), tf_ms))
    grouped = df.sort_values("timestamp").groupby("bucket", sort=True).agg(
        open=("open", "first"),
        high=("high", "max"),
        low=("low", "min"),
        close=("close", "last"),
        volume=("volume", "sum"),
    )

    symbol = candles[0].symbol
    return [
        Candle(
            symbol=symbol,
            timeframe=timeframe,
            timestamp=int(bucket),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for bucket, row in grouped.iterrows()
    ]


async def download_candles(
    fetcher: CandleFetcher,
    symbol: str,
    timeframe: str,
    since: int,
    until: int,
    batch: int = DOWNLOAD_BATCH,
    pause_s: float = 0.1,
) -> List[Candle]:
    """
    Page through ``fetcher`` from ``since`` until ``until`` (epoch ms).

    Fetcher errors propagate; the partial download is discarded.
    """
    tf_ms = timeframe_to_ms(timeframe)
    by_ts = {}
    cursor = bucket_timestamp(since, tf_ms)

    logger.info(
        "data_loader.downloading",
        symbol=symbol,
        timeframe=timeframe,
        since=since,
        until=until,
    )

    while cursor < until:
        candles = await fetcher(symbol, timeframe, batch, since=cursor)
        if not candles:
            break

        for candle in candles:
            if candle.timestamp < until:
                by_ts[candle.timestamp] = candle

        last_ts = candles[-1].timestamp
        if last_ts < cursor:
            break
        cursor = last_ts + tf_ms

        # Rate limit protection
        await asyncio.sleep(pause_s)

    result = [by_ts[ts] for ts in sorted(by_ts)]
    logger.info("data_loader.complete", symbol=symbol, timeframe=timeframe, records=len(result))
    return result
