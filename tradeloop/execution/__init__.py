"""Order execution for tradeloop.

- ExecutionEngine: entry + reduce-only stop / take-profit bracket
- PaperBroker: simulated OrderGateway
- PaperAccount: running balance, equity and trade tally
- PositionGuard: forced exits and trailing stops for paper positions
"""

from tradeloop.execution.execution_engine import ExecutionEngine, OrderGateway
from tradeloop.execution.paper_account import PaperAccount
from tradeloop.execution.paper_broker import PaperBroker, PaperOrderRejected
from tradeloop.execution.position_guard import (
    GuardOutcome,
    PositionGuard,
    TrailingStopUpdate,
    check_forced_exit,
    evaluate_trailing_stop,
    get_pre_execution_skip_reason,
)

__all__ = [
    "ExecutionEngine",
    "OrderGateway",
    "PaperAccount",
    "PaperBroker",
    "PaperOrderRejected",
    "PositionGuard",
    "GuardOutcome",
    "TrailingStopUpdate",
    "check_forced_exit",
    "evaluate_trailing_stop",
    "get_pre_execution_skip_reason",
]
