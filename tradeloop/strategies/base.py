"""Base class for all trading strategies."""
from abc import ABC, abstractmethod
from typing import Any, Dict, Sequence

import structlog

from tradeloop.core.models import Candle, IntentType, PositionSide, TradeIntent
from tradeloop.core.snapshot import TickSnapshot

logger = structlog.get_logger(__name__)


class BaseStrategy(ABC):
    """Abstract base class for trading strategies.

    Strategies are pure deciders: they read candles and the current position
    side and return a TradeIntent. Sizing belongs to the risk manager.
    """

    def __init__(self, name: str):
        self.name = name
        self.is_active = True
        self.logger = logger.bind(strategy=name)

        # Track strategy activity
        self.decisions = 0
        self.intents_by_type: Dict[str, int] = {t.value: 0 for t in IntentType}

    @abstractmethod
    def decide(self, candles: Sequence[Candle], position: PositionSide = PositionSide.FLAT) -> TradeIntent:
        """
        Decide what to do given execution-timeframe candles.

        Args:
            candles: Execution timeframe candles, oldest first
            position: Side of the current position on the symbol

        Returns:
            TradeIntent (NO_ACTION when nothing should happen)
        """

    def evaluate(self, snapshot: TickSnapshot, position: PositionSide = PositionSide.FLAT) -> TradeIntent:
        """Run ``decide`` on the snapshot's execution series."""
        if not self.is_active:
            return TradeIntent.no_action(snapshot.symbol, "strategy_paused")

        intent = self.decide(snapshot.candles(snapshot.execution_timeframe), position)
        self.decisions += 1
        self.intents_by_type[intent.intent.value] += 1
        self.logger.debug(
            "strategy.decision",
            symbol=snapshot.symbol,
            as_of_ts=snapshot.as_of_ts,
            intent=intent.intent.value,
            reason=intent.reason,
        )
        return intent

    def get_required_data(self) -> Dict[str, Any]:
        """
        Return data requirements for this strategy.
        Override to specify needed timeframes and history length.
        """
        return {
            'timeframes': ['1m'],
            'min_bars': 50,
        }

    def get_stats(self) -> Dict[str, Any]:
        """Get strategy statistics."""
        return {
            'name': self.name,
            'is_active': self.is_active,
            'decisions': self.decisions,
            'intents': dict(self.intents_by_type),
        }

    def pause(self):
        """Pause the strategy."""
        self.is_active = False
        self.logger.info("strategy.paused")

    def resume(self):
        """Resume the strategy."""
        self.is_active = True
        self.logger.info("strategy.resumed")

    def _no_action(self, candles: Sequence[Candle], reason: str) -> TradeIntent:
        symbol = candles[-1].symbol if candles else "UNKNOWN"
        return TradeIntent.no_action(symbol, reason)
