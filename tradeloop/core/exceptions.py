"""Exception hierarchy for the tradeloop pipeline.

Validation errors raised by pure computation (timeframes, alignment, cache
lookups) are fatal to the current cycle. Sizing and position-existence
outcomes are raised only inside the risk manager and surface to callers as
an absent plan.
"""
from typing import Optional


class TradeLoopError(Exception):
    """Base class for all tradeloop errors."""


# =============================================================================
# Time / Alignment
# =============================================================================

class InvalidTimeframe(TradeLoopError, ValueError):
    """Timeframe string is malformed or has a non-positive count."""


class InvalidTimestamp(TradeLoopError, ValueError):
    """Timestamp is not a finite, non-negative number of epoch milliseconds."""


class InvalidDuration(TradeLoopError, ValueError):
    """Bucket duration is not a finite, positive number of milliseconds."""


class AlignmentError(TradeLoopError, ValueError):
    """A timestamp does not sit on its timeframe bucket boundary."""

    def __init__(
        self,
        ts: int,
        tf_ms: int,
        bucketed: int,
        context: Optional[str] = None,
    ):
        self.ts = ts
        self.tf_ms = tf_ms
        self.bucketed = bucketed
        self.offset = ts - bucketed
        self.context = context
        context_str = f" (context: {context})" if context else ""
        super().__init__(
            f"Timestamp not aligned to timeframe bucket{context_str}: "
            f"ts={ts}, tfMs={tf_ms}, bucketed={bucketed}, offset={self.offset}ms"
        )


# =============================================================================
# Cache
# =============================================================================

class UnknownTimeframe(TradeLoopError, LookupError):
    """Query against a timeframe the cache was not configured to track."""

    def __init__(self, timeframe: str, tracked):
        self.timeframe = timeframe
        self.tracked = list(tracked)
        super().__init__(
            f"Timeframe {timeframe} is not tracked in this cache "
            f"(tracked: {self.tracked})"
        )


class SeriesMismatch(TradeLoopError, ValueError):
    """Candle belongs to a different symbol or timeframe than its series."""

    def __init__(self, candle, symbol: str, timeframe: str, context: Optional[str] = None):
        self.candle = candle
        self.symbol = symbol
        self.timeframe = timeframe
        self.context = context
        context_str = f" (context: {context})" if context else ""
        super().__init__(
            f"Candle {candle.symbol} {candle.timeframe} does not belong to "
            f"series {symbol} {timeframe}{context_str}"
        )


# =============================================================================
# Risk
# =============================================================================

class SizingUnavailable(TradeLoopError):
    """Risk manager could not produce a positive, finite position size."""


class NoPositionToClose(TradeLoopError):
    """Close requested for a position that is not open."""


# =============================================================================
# Forecasting / Execution
# =============================================================================

class SingularRegression(TradeLoopError, ArithmeticError):
    """Normal equations of a least-squares fit are singular."""


class PartialExecutionError(TradeLoopError):
    """Entry order was acknowledged but a protective order failed.

    The partial report keeps every order id acknowledged before the failure;
    the exchange error is chained as ``__cause__``.
    """

    def __init__(self, report, failed_leg: str):
        self.report = report
        self.failed_leg = failed_leg
        super().__init__(
            f"{failed_leg} order failed after entry {report.entry_order_id} "
            f"for {report.plan.symbol}"
        )
