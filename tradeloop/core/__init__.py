"""Core types for tradeloop: models, configuration, errors and time utilities."""

from tradeloop.core.exceptions import (
    AlignmentError,
    InvalidDuration,
    InvalidTimeframe,
    InvalidTimestamp,
    NoPositionToClose,
    PartialExecutionError,
    SeriesMismatch,
    SingularRegression,
    SizingUnavailable,
    TradeLoopError,
    UnknownTimeframe,
)
from tradeloop.core.models import (
    AccountState,
    Candle,
    ClosedTrade,
    CurrentPosition,
    ExecutionReport,
    IntentType,
    OrderAck,
    OrderSide,
    OrderType,
    PaperAccountSnapshot,
    PaperPosition,
    PlanAction,
    Position,
    PositionSide,
    TradeCounters,
    TradeIntent,
    TradePlan,
)
from tradeloop.core.snapshot import TickSnapshot, build_tick_snapshot, snapshot_from_cache

__all__ = [
    # Errors
    "TradeLoopError",
    "InvalidTimeframe",
    "InvalidTimestamp",
    "InvalidDuration",
    "AlignmentError",
    "UnknownTimeframe",
    "SeriesMismatch",
    "SizingUnavailable",
    "NoPositionToClose",
    "SingularRegression",
    "PartialExecutionError",
    # Models
    "Candle",
    "TradeIntent",
    "TradePlan",
    "Position",
    "CurrentPosition",
    "AccountState",
    "OrderAck",
    "ExecutionReport",
    "ClosedTrade",
    "TradeCounters",
    "PaperAccountSnapshot",
    "PaperPosition",
    "OrderSide",
    "OrderType",
    "PositionSide",
    "IntentType",
    "PlanAction",
    # Snapshot
    "TickSnapshot",
    "build_tick_snapshot",
    "snapshot_from_cache",
]
