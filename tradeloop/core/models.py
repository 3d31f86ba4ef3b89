"""Data models for the tradeloop pipeline.

This module defines the value objects passed between the pipeline stages:
- Market data: Candle
- Strategy output: TradeIntent
- Risk output: TradePlan
- Account/exchange snapshots: Position, AccountState, OrderAck
- Execution output: ExecutionReport
- Paper bookkeeping: ClosedTrade, PaperAccountSnapshot, PaperPosition

Candle prices and indicator values are floats. Monetary values produced by
the risk manager and the paper account use Decimal for precision.
All timestamps are UTC epoch milliseconds.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tradeloop.core.exceptions import SeriesMismatch
from tradeloop.core.timeframes import assert_bucket_aligned, timeframe_to_ms

ZERO = Decimal("0")


# =============================================================================
# Enums
# =============================================================================

class OrderSide(str, Enum):
    """Order side - buy or sell."""
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderType(str, Enum):
    """Order types understood by order gateways."""
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"
    TAKE_PROFIT = "take-profit"


class PositionSide(str, Enum):
    """Position side - long, short, or flat."""
    LONG = "LONG"
    SHORT = "SHORT"
    FLAT = "FLAT"


class IntentType(str, Enum):
    """Directional intents a strategy can emit."""
    OPEN_LONG = "OPEN_LONG"
    OPEN_SHORT = "OPEN_SHORT"
    CLOSE_LONG = "CLOSE_LONG"
    CLOSE_SHORT = "CLOSE_SHORT"
    NO_ACTION = "NO_ACTION"


class PlanAction(str, Enum):
    """Trade plan action."""
    OPEN = "OPEN"
    CLOSE = "CLOSE"


# =============================================================================
# Market Data Models
# =============================================================================

class Candle(BaseModel):
    """OHLCV bar for one timeframe bucket.

    Attributes:
        symbol: Trading pair symbol (e.g., "BTC/USDT")
        timeframe: Candle timeframe (e.g., "1m", "4h", "1d")
        timestamp: Bucket start in epoch milliseconds (UTC)
        open: Opening price
        high: Highest price
        low: Lowest price
        close: Closing price
        volume: Traded volume
    """
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., description="Trading pair symbol")
    timeframe: str = Field(..., description="Candle timeframe")
    timestamp: int = Field(..., ge=0, description="Bucket start (epoch ms, UTC)")
    open: float = Field(..., description="Opening price")
    high: float = Field(..., description="Highest price")
    low: float = Field(..., description="Lowest price")
    close: float = Field(..., description="Closing price")
    volume: float = Field(default=0.0, description="Trading volume")

    @model_validator(mode="after")
    def high_low_consistent(self) -> "Candle":
        """Validate low <= high."""
        if self.low > self.high:
            raise ValueError("Low must be <= high")
        return self

    @model_validator(mode="after")
    def timestamp_on_bucket(self) -> "Candle":
        """Validate the timestamp sits on a ``timeframe`` bucket boundary."""
        assert_bucket_aligned(self.timestamp, timeframe_to_ms(self.timeframe), "candle")
        return self

    @property
    def typical_price(self) -> float:
        """(high + low + close) / 3."""
        return (self.high + self.low + self.close) / 3

    @property
    def opened_at(self) -> datetime:
        """Bucket start as a timezone-aware UTC datetime."""
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)


def assert_candle_matches(
    candle: Candle,
    symbol: str,
    timeframe: str,
    tf_ms: int,
    context: Optional[str] = None,
) -> None:
    """Raise SeriesMismatch unless ``candle`` belongs to the ``symbol``/``timeframe`` series."""
    if candle.symbol != symbol:
        raise SeriesMismatch(candle, symbol, timeframe, context)
    if candle.timeframe != timeframe and timeframe_to_ms(candle.timeframe) != tf_ms:
        raise SeriesMismatch(candle, symbol, timeframe, context)


# =============================================================================
# Strategy Models
# =============================================================================

class TradeIntent(BaseModel):
    """Directional decision produced by a strategy. Carries no sizing."""
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., description="Trading pair")
    intent: IntentType = Field(..., description="Intent type")
    reason: str = Field(default="", description="Why the strategy decided this")

    @classmethod
    def no_action(cls, symbol: str, reason: str) -> "TradeIntent":
        return cls(symbol=symbol, intent=IntentType.NO_ACTION, reason=reason)

    @property
    def is_open(self) -> bool:
        return self.intent in (IntentType.OPEN_LONG, IntentType.OPEN_SHORT)

    @property
    def is_close(self) -> bool:
        return self.intent in (IntentType.CLOSE_LONG, IntentType.CLOSE_SHORT)


# =============================================================================
# Account Models
# =============================================================================

class Position(BaseModel):
    """Open position as reported by an exchange or the paper broker.

    Attributes:
        symbol: Trading pair
        side: Long, short, or flat
        contracts: Position size (always non-negative)
        entry_price: Average entry price
        unrealized_pnl: Current unrealized PnL
        leverage: Position leverage (1 for spot)
    """
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., description="Trading pair symbol")
    side: PositionSide = Field(..., description="Position side")
    contracts: Decimal = Field(..., ge=0, description="Position size")
    entry_price: Decimal = Field(default=ZERO, ge=0, description="Average entry price")
    unrealized_pnl: Decimal = Field(default=ZERO, description="Unrealized PnL")
    leverage: Decimal = Field(default=Decimal("1"), gt=0, description="Leverage")

    @property
    def is_open(self) -> bool:
        """True if position is currently open."""
        return self.side != PositionSide.FLAT and self.contracts > 0


class CurrentPosition(BaseModel):
    """Exposure the risk manager plans against: side, size and leverage."""
    model_config = ConfigDict(frozen=True)

    side: PositionSide = Field(default=PositionSide.FLAT)
    size: Decimal = Field(default=ZERO, ge=0)
    leverage: Decimal = Field(default=Decimal("1"), gt=0)

    @classmethod
    def flat(cls) -> "CurrentPosition":
        return cls()

    @classmethod
    def from_position(cls, position: Optional[Position]) -> "CurrentPosition":
        if position is None or not position.is_open:
            return cls()
        return cls(side=position.side, size=position.contracts, leverage=position.leverage)

    @property
    def is_open(self) -> bool:
        return self.side != PositionSide.FLAT and self.size > 0


class AccountState(BaseModel):
    """Balance and position snapshot refreshed before each planning cycle."""
    model_config = ConfigDict(frozen=True)

    balance_usdt: Decimal = Field(..., description="Account equity in USDT")
    positions: Tuple[Position, ...] = Field(default_factory=tuple, description="Open positions")

    @property
    def open_positions(self) -> Tuple[Position, ...]:
        return tuple(p for p in self.positions if p.is_open)

    def position_for(self, symbol: str) -> Optional[Position]:
        """Return the open position for ``symbol``, if any."""
        for position in self.positions:
            if position.symbol == symbol and position.is_open:
                return position
        return None


# =============================================================================
# Plan / Order Models
# =============================================================================

class TradePlan(BaseModel):
    """Sized, bracketed trade produced by the risk manager.

    Attributes:
        symbol: Trading pair
        action: OPEN or CLOSE
        side: Order side of the entry order
        position_side: Side of the position being opened or closed
        amount: Order quantity (> 0)
        entry_price: Reference price the plan was sized at
        leverage: Leverage to apply
        stop_loss_price: Protective stop (required for OPEN)
        take_profit_price: Profit target (required for OPEN)
        reduce_only: True for closing plans
        reason: Strategy reason carried through for logging
    """
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., description="Trading pair")
    action: PlanAction = Field(..., description="Plan action")
    side: OrderSide = Field(..., description="Entry order side")
    position_side: PositionSide = Field(..., description="Position side")
    amount: Decimal = Field(..., gt=0, description="Order quantity")
    entry_price: Decimal = Field(..., gt=0, description="Reference entry price")
    leverage: Decimal = Field(default=Decimal("1"), gt=0, description="Leverage")
    stop_loss_price: Optional[Decimal] = Field(default=None, description="Stop loss price")
    take_profit_price: Optional[Decimal] = Field(default=None, description="Take profit price")
    reduce_only: bool = Field(default=False, description="Only reduce exposure")
    reason: str = Field(default="", description="Strategy reason")

    @model_validator(mode="after")
    def validate_bracket(self) -> "TradePlan":
        """Check protective prices and reduce-only flags against the action."""
        if self.position_side == PositionSide.FLAT:
            raise ValueError("Trade plan must target a LONG or SHORT position")

        if self.action == PlanAction.CLOSE:
            if not self.reduce_only:
                raise ValueError("Close plans must be reduce-only")
            return self

        if self.stop_loss_price is None or self.take_profit_price is None:
            raise ValueError("Open plans require stop loss and take profit prices")
        if self.position_side == PositionSide.LONG:
            if not self.stop_loss_price < self.entry_price < self.take_profit_price:
                raise ValueError("Long plan requires stop < entry < take profit")
        elif not self.take_profit_price < self.entry_price < self.stop_loss_price:
            raise ValueError("Short plan requires take profit < entry < stop")
        return self

    @property
    def quantity(self) -> Decimal:
        """Alias for amount."""
        return self.amount

    @property
    def is_open(self) -> bool:
        return self.action == PlanAction.OPEN

    @property
    def exit_side(self) -> OrderSide:
        """Side of the protective orders (opposite of the entry)."""
        return self.side.opposite


class OrderAck(BaseModel):
    """Acknowledgement returned by an order gateway."""
    model_config = ConfigDict(frozen=True)

    order_id: str = Field(..., description="Exchange or paper order id")
    symbol: str = Field(..., description="Trading pair")
    side: OrderSide = Field(..., description="Order side")
    order_type: OrderType = Field(..., description="Order type")
    amount: Decimal = Field(..., description="Order quantity")
    price: Optional[Decimal] = Field(default=None, description="Fill or trigger price")
    reduce_only: bool = Field(default=False)
    status: str = Field(default="open", description="Order status reported by the venue")
    raw: Dict[str, Any] = Field(default_factory=dict, description="Raw venue response")


class ExecutionReport(BaseModel):
    """Order ids produced while executing a trade plan."""

    plan: TradePlan
    entry_order_id: str
    stop_order_id: Optional[str] = None
    take_profit_order_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        """True if every order the plan calls for was acknowledged."""
        if self.plan.reduce_only or not self.plan.is_open:
            return True
        if self.plan.stop_loss_price is not None and self.stop_order_id is None:
            return False
        if self.plan.take_profit_price is not None and self.take_profit_order_id is None:
            return False
        return True


# =============================================================================
# Paper Trading Models
# =============================================================================

class ClosedTrade(BaseModel):
    """Round trip realised by the paper broker."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    side: PositionSide
    size: Decimal = ZERO
    entry_price: Decimal = ZERO
    exit_price: Decimal = ZERO
    realized_pnl: Decimal
    timestamp: int = 0


class TradeCounters(BaseModel):
    """Win/loss tally for a paper session."""
    model_config = ConfigDict(frozen=True)

    total: int = 0
    wins: int = 0
    losses: int = 0
    breakeven: int = 0

    @property
    def win_rate(self) -> Decimal:
        """Win rate percentage."""
        if self.total == 0:
            return ZERO
        return (Decimal(self.wins) / Decimal(self.total)) * 100


class PaperAccountSnapshot(BaseModel):
    """Point-in-time view of a paper account."""
    model_config = ConfigDict(frozen=True)

    starting_balance: Decimal
    balance: Decimal
    equity: Decimal
    total_realized_pnl: Decimal
    max_equity: Decimal
    max_drawdown: Decimal
    trades: TradeCounters
    last_trade: Optional[ClosedTrade] = None


class PaperPosition(BaseModel):
    """Mutable per-symbol position state held by the paper broker."""

    symbol: str
    side: PositionSide = PositionSide.FLAT
    size: Decimal = ZERO
    avg_entry_price: Optional[Decimal] = None
    realized_pnl: Decimal = ZERO
    stop_loss_price: Optional[Decimal] = None
    take_profit_price: Optional[Decimal] = None
    peak_price: Optional[Decimal] = None
    trough_price: Optional[Decimal] = None
    trailing_stop_price: Optional[Decimal] = None
    is_trailing_active: bool = False

    @property
    def is_open(self) -> bool:
        return self.side != PositionSide.FLAT and self.size > 0

    def unrealized_pnl(self, price: Decimal) -> Decimal:
        """Unrealized PnL at ``price`` (zero when flat)."""
        if not self.is_open or self.avg_entry_price is None:
            return ZERO
        if self.side == PositionSide.LONG:
            return (price - self.avg_entry_price) * self.size
        return (self.avg_entry_price - price) * self.size

    def to_current(self) -> CurrentPosition:
        if not self.is_open:
            return CurrentPosition.flat()
        return CurrentPosition(side=self.side, size=self.size)

    def reset(self) -> None:
        """Flatten the position, keeping cumulative realized PnL."""
        self.side = PositionSide.FLAT
        self.size = ZERO
        self.avg_entry_price = None
        self.stop_loss_price = None
        self.take_profit_price = None
        self.peak_price = None
        self.trough_price = None
        self.trailing_stop_price = None
        self.is_trailing_active = False
