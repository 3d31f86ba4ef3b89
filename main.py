"""
TradeLoop - Main Entry Point

Multi-timeframe candle pipeline with risk-sized, bracketed execution.

Usage:
    # Check configuration
    python main.py --check

    # Download history into a CSV (ccxt, public endpoints)
    python main.py --download data/btc_1m.csv --days 7 --timeframe 1m

    # Replay a CSV through the MACD+AR4 strategy with paper fills
    python main.py --backtest data/btc_1m.csv --timeframe 1m --balance 10000
"""

import argparse
import asyncio
import time
from decimal import Decimal

import structlog

from tradeloop.backtest import (BacktestRunner, download_candles,
                                load_candles_csv, save_candles_csv)
from tradeloop.core.config import LoggingConfig, RiskConfig, RuntimeConfig
from tradeloop.core.timeframes import DAY_MS
from tradeloop.data.fetcher import CcxtCandleFetcher
from tradeloop.exchange.ccxt_gateway import create_exchange
from tradeloop.strategies.macd_ar4 import MacdAr4Strategy
from tradeloop.utils.logging_config import setup_logging

logger = structlog.get_logger(__name__)


def print_config(runtime: RuntimeConfig, risk: RiskConfig):
    print("\n" + "=" * 60)
    print("           CONFIGURATION CHECK")
    print("=" * 60)
    print(f"\nTrading Mode: {runtime.trading_mode}")
    print(f"Symbol: {runtime.symbol} (signals from {runtime.signal_venue})")
    print(f"Execution Timeframe: {runtime.execution_timeframe}")
    print(f"Tracked Timeframes: {', '.join(runtime.timeframes)}")
    print(f"Risk per Trade: {risk.risk_per_trade_pct * 100}%")
    print(f"Stop Loss / Take Profit: {risk.sl_pct}% / {risk.tp_pct}%")
    print(f"Max Leverage: {risk.max_leverage}x")
    print("\n" + "=" * 60)


async def run_download(runtime: RuntimeConfig, path: str, days: int):
    """Download ``days`` of execution-timeframe candles into ``path``."""
    exchange = create_exchange(runtime.exchange_id)
    try:
        fetcher = CcxtCandleFetcher(exchange)
        until = int(time.time() * 1000)
        candles = await download_candles(
            fetcher,
            runtime.symbol,
            runtime.execution_timeframe,
            since=until - days * DAY_MS,
            until=until,
        )
    finally:
        await exchange.close()

    save_candles_csv(candles, path)
    print(f"\n✓ Saved {len(candles)} candles to {path}")


async def run_backtest(runtime: RuntimeConfig, risk: RiskConfig, path: str, warmup: int):
    """Replay a CSV and print the result summary."""
    candles = load_candles_csv(path, runtime.symbol, runtime.execution_timeframe)
    if not candles:
        print(f"\n✗ No candles in {path}")
        return

    runner = BacktestRunner(
        strategy=MacdAr4Strategy(),
        symbol=runtime.symbol,
        execution_timeframe=runtime.execution_timeframe,
        timeframes=runtime.timeframes,
        risk_config=risk,
        starting_balance=runtime.starting_balance,
        signal_venue=runtime.signal_venue,
        cache_limit=runtime.cache_limit,
        warmup=warmup,
    )
    result = await runner.run(candles)

    print("\n" + "=" * 60)
    print("           BACKTEST RESULT")
    print("=" * 60)
    for key, value in result.summary().items():
        print(f"{key:>20}: {value}")
    print("=" * 60)


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="TradeLoop - candle pipeline and backtester")

    # Actions
    parser.add_argument("--check", action="store_true", help="Check configuration and exit")
    parser.add_argument("--backtest", metavar="CSV", help="Replay candles from a CSV file")
    parser.add_argument("--download", metavar="CSV", help="Download candles into a CSV file")

    # Overrides
    parser.add_argument("--symbol", help="Trading symbol (default: TRADELOOP_SYMBOL)")
    parser.add_argument("--timeframe", help="Execution timeframe (default: TRADELOOP_EXECUTION_TIMEFRAME)")
    parser.add_argument("--balance", type=Decimal, help="Starting paper balance in USDT")
    parser.add_argument("--days", type=int, default=7, help="Days of history to download (default: 7)")
    parser.add_argument("--warmup", type=int, default=0, help="Candles to load before trading (default: 0)")

    args = parser.parse_args()

    # Setup logging
    setup_logging(LoggingConfig())

    overrides = {}
    if args.symbol:
        overrides["symbol"] = args.symbol
    if args.timeframe:
        overrides["execution_timeframe"] = args.timeframe
    if args.balance is not None:
        overrides["starting_balance"] = args.balance
    runtime = RuntimeConfig(**overrides)
    risk = RiskConfig()

    if args.check:
        print_config(runtime, risk)
        return

    if args.download:
        await run_download(runtime, args.download, args.days)
        return

    if args.backtest:
        await run_backtest(runtime, risk, args.backtest, args.warmup)
        return

    parser.print_help()


if __name__ == "__main__":
    asyncio.run(main())
