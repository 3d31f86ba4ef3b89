"""
Backtest runner.

Replays execution-timeframe candles one tick at a time through the same
pipeline a live session uses:

    cache -> position guard -> snapshot -> strategy -> risk -> execution

Fills are simulated by the PaperBroker at each candle's close. Higher
timeframes are fed into the cache only once their bucket has closed, so a
tick never sees a candle from its future.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
import structlog

from tradeloop.backtest.data_loader import resample_candles
from tradeloop.core.config import RiskConfig
from tradeloop.core.exceptions import PartialExecutionError
from tradeloop.core.models import (Candle, ClosedTrade, ExecutionReport,
                                   PaperAccountSnapshot)
from tradeloop.core.snapshot import snapshot_from_cache
from tradeloop.core.timeframes import DAY_MS, timeframe_to_ms
from tradeloop.data.cache import MultiTimeframeCache
from tradeloop.execution.execution_engine import ExecutionEngine
from tradeloop.execution.paper_account import PaperAccount
from tradeloop.execution.paper_broker import PaperBroker, PaperOrderRejected
from tradeloop.execution.position_guard import (PositionGuard,
                                                get_pre_execution_skip_reason)
from tradeloop.risk.risk_manager import RiskManager
from tradeloop.strategies.base import BaseStrategy

logger = structlog.get_logger(__name__)


@dataclass
class TickRecord:
    """What happened on one execution candle."""

    timestamp: int
    close: float
    intent: str
    reason: str
    action: Optional[str] = None
    skip_reason: Optional[str] = None
    error: Optional[str] = None
    forced_exit: bool = False
    position_side: str = "FLAT"
    balance: Decimal = Decimal("0")
    equity: Decimal = Decimal("0")


@dataclass
class BacktestResult:
    """Complete backtest results."""

    symbol: str
    timeframe: str
    starting_balance: Decimal
    final_snapshot: PaperAccountSnapshot
    ticks: List[TickRecord] = field(default_factory=list)
    trades: List[ClosedTrade] = field(default_factory=list)
    executions: List[ExecutionReport] = field(default_factory=list)
    equity_curve: pd.DataFrame = field(default_factory=pd.DataFrame)

    @property
    def final_equity(self) -> Decimal:
        return self.final_snapshot.equity

    @property
    def total_return_pct(self) -> float:
        if self.starting_balance <= 0:
            return 0.0
        return float((self.final_equity - self.starting_balance) / self.starting_balance * 100)

    @property
    def max_drawdown_pct(self) -> float:
        """Largest peak-to-trough equity decline, as a negative percentage."""
        if self.equity_curve.empty:
            return 0.0
        return float(self.equity_curve["drawdown_pct"].min())

    @property
    def win_rate_pct(self) -> float:
        return float(self.final_snapshot.trades.win_rate)

    @property
    def sharpe_ratio(self) -> float:
        """Annualised per-tick Sharpe ratio (risk-free rate = 0)."""
        if len(self.equity_curve) < 2:
            return 0.0
        returns = self.equity_curve["equity"].pct_change().dropna()
        std = returns.std()
        if not std or np.isnan(std):
            return 0.0
        periods_per_year = 365 * DAY_MS / timeframe_to_ms(self.timeframe)
        return float(returns.mean() / std * np.sqrt(periods_per_year))

    def summary(self) -> Dict[str, object]:
        counters = self.final_snapshot.trades
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "ticks": len(self.ticks),
            "trades": counters.total,
            "wins": counters.wins,
            "losses": counters.losses,
            "win_rate_pct": round(self.win_rate_pct, 2),
            "starting_balance": str(self.starting_balance),
            "final_equity": str(self.final_equity),
            "total_return_pct": round(self.total_return_pct, 4),
            "max_drawdown_pct": round(self.max_drawdown_pct, 4),
            "sharpe_ratio": round(self.sharpe_ratio, 4),
        }


class BacktestRunner:
    """
    Sequential tick loop over historical candles.

    Each runner owns one PaperAccount; run it once per backtest.
    """

    def __init__(
        self,
        strategy: BaseStrategy,
        symbol: str,
        execution_timeframe: str = "1m",
        timeframes: Optional[Sequence[str]] = None,
        risk_config: Optional[RiskConfig] = None,
        starting_balance: Decimal = Decimal("10000"),
        signal_venue: str = "backtest",
        cache_limit: int = 300,
        warmup: int = 0,
    ):
        self.strategy = strategy
        self.symbol = symbol
        self.execution_timeframe = execution_timeframe
        self.timeframes = tuple(dict.fromkeys([execution_timeframe, *(timeframes or ())]))
        self.signal_venue = signal_venue
        self.warmup = max(int(warmup), 0)
        self.starting_balance = Decimal(str(starting_balance))

        min_bars = int(strategy.get_required_data().get("min_bars", 0))
        self.cache = MultiTimeframeCache(symbol, self.timeframes, limit=max(cache_limit, min_bars))
        self.account = PaperAccount(self.starting_balance)
        self.broker = PaperBroker(self.account)
        self.risk_manager = RiskManager(risk_config)
        self.engine = ExecutionEngine(self.broker)
        self.guard = PositionGuard(self.broker, self.risk_manager, self.engine)

        self._exec_tf_ms = timeframe_to_ms(execution_timeframe)
        self._pending: Dict[str, List[Candle]] = {}

    async def run(
        self,
        candles: Sequence[Candle],
        higher_timeframes: Optional[Mapping[str, Sequence[Candle]]] = None,
    ) -> BacktestResult:
        """
        Replay ``candles`` (execution timeframe, any order).

        Args:
            candles: Execution-timeframe candles
            higher_timeframes: Series for the other tracked timeframes;
                resampled from ``candles`` when omitted

        Returns:
            BacktestResult with one TickRecord per traded candle
        """
        ordered = sorted(candles, key=lambda c: c.timestamp)
        self._prepare_higher_timeframes(ordered, higher_timeframes or {})

        logger.info(
            "backtest_runner.starting",
            symbol=self.symbol,
            timeframe=self.execution_timeframe,
            candles=len(ordered),
            warmup=self.warmup,
            starting_balance=str(self.starting_balance),
        )

        ticks: List[TickRecord] = []
        trades: List[ClosedTrade] = []
        executions: List[ExecutionReport] = []

        for i, candle in enumerate(ordered):
            self._ingest(candle)
            if i < self.warmup:
                continue

            last_trade = self.account.last_trade
            record, report = await self._tick(candle)
            if report is not None:
                executions.append(report)

            snapshot = self.account.snapshot(self.broker.unrealized_pnl(self.symbol))
            if snapshot.last_trade is not None and snapshot.last_trade is not last_trade:
                trades.append(snapshot.last_trade)

            record.balance = snapshot.balance
            record.equity = snapshot.equity
            record.position_side = self.broker.get_position(self.symbol).side.value
            ticks.append(record)

        final_snapshot = self.account.snapshot(self.broker.unrealized_pnl(self.symbol))
        result = BacktestResult(
            symbol=self.symbol,
            timeframe=self.execution_timeframe,
            starting_balance=self.starting_balance,
            final_snapshot=final_snapshot,
            ticks=ticks,
            trades=trades,
            executions=executions,
            equity_curve=self._equity_curve(ticks),
        )

        logger.info("backtest_runner.complete", **result.summary())
        return result

    # =========================================================================
    # Tick
    # =========================================================================

    async def _tick(self, candle: Candle):
        self.broker.update_price(self.symbol, candle.close, candle.timestamp)
        account_state = await self.broker.fetch_account_state()

        outcome = await self.guard.check(candle, account_state.balance_usdt)
        if outcome.handled:
            record = TickRecord(
                timestamp=candle.timestamp,
                close=candle.close,
                intent=outcome.intent.intent.value,
                reason=outcome.intent.reason,
                action=outcome.report.plan.action.value if outcome.report else None,
                skip_reason=outcome.skip_reason,
                forced_exit=True,
            )
            return record, outcome.report

        snapshot = snapshot_from_cache(
            self.cache,
            self.signal_venue,
            self.execution_timeframe,
            execution_candle=candle,
            source="replay",
        )
        position = self.broker.get_position(self.symbol)
        intent = self.strategy.evaluate(snapshot, position.side)
        record = TickRecord(
            timestamp=candle.timestamp,
            close=candle.close,
            intent=intent.intent.value,
            reason=intent.reason,
        )

        plan = self.risk_manager.plan(intent, candle.close, account_state, position.to_current())
        if plan is None:
            return record, None

        record.action = plan.action.value
        skip_reason = get_pre_execution_skip_reason(plan, position)
        if skip_reason:
            logger.debug(
                "backtest_runner.plan_skipped",
                timestamp=candle.timestamp,
                skip_reason=skip_reason,
            )
            record.skip_reason = skip_reason
            return record, None

        try:
            report = await self.engine.execute(plan)
        except PartialExecutionError as e:
            logger.error(
                "backtest_runner.execution_failed",
                timestamp=candle.timestamp,
                failed_leg=e.failed_leg,
                error=str(e),
            )
            record.error = str(e)
            return record, e.report
        except PaperOrderRejected as e:
            logger.error(
                "backtest_runner.execution_failed",
                timestamp=candle.timestamp,
                error=str(e),
            )
            record.error = e.reason
            return record, None

        return record, report

    # =========================================================================
    # Data feed
    # =========================================================================

    def _prepare_higher_timeframes(
        self,
        ordered: Sequence[Candle],
        provided: Mapping[str, Sequence[Candle]],
    ) -> None:
        self._pending = {}
        for tf in self.timeframes:
            if tf == self.execution_timeframe:
                continue
            series = provided.get(tf)
            if series is None:
                series = resample_candles(ordered, tf)
            self._pending[tf] = sorted(series, key=lambda c: c.timestamp)

    def _ingest(self, candle: Candle) -> None:
        """Append the execution candle and every higher candle closed by its end."""
        self.cache.append_candle(self.execution_timeframe, candle)
        tick_end = candle.timestamp + self._exec_tf_ms
        for tf, pending in self._pending.items():
            tf_ms = self.cache.timeframe_ms(tf)
            closed = 0
            while closed < len(pending) and pending[closed].timestamp + tf_ms <= tick_end:
                closed += 1
            if closed:
                self.cache.append_candles(tf, pending[:closed])
                del pending[:closed]

    # =========================================================================
    # Results
    # =========================================================================

    @staticmethod
    def _equity_curve(ticks: Sequence[TickRecord]) -> pd.DataFrame:
        if not ticks:
            return pd.DataFrame(columns=["balance", "equity", "peak", "drawdown_pct"])

        df = pd.DataFrame(
            {
                "timestamp": pd.to_datetime([t.timestamp for t in ticks], unit="ms", utc=True),
                "balance": [float(t.balance) for t in ticks],
                "equity": [float(t.equity) for t in ticks],
            }
        ).set_index("timestamp")
        df["peak"] = df["equity"].cummax()
        df["drawdown_pct"] = (df["equity"] - df["peak"]) / df["peak"] * 100
        return df
