"""Simulated order gateway for paper trading and backtests.

Market orders fill immediately at the last price fed through
``update_price``. Stop and take-profit orders rest on the position; they are
triggered by the position guard, not by the broker.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

import structlog

from tradeloop.core.exceptions import TradeLoopError
from tradeloop.core.models import (AccountState, ClosedTrade, OrderAck,
                                   OrderSide, OrderType, PaperPosition,
                                   Position, PositionSide)
from tradeloop.execution.paper_account import PaperAccount

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


class PaperOrderRejected(TradeLoopError):
    """Paper broker refused an order."""

    def __init__(self, reason: str, symbol: str):
        self.reason = reason
        self.symbol = symbol
        super().__init__(f"Paper order rejected for {symbol}: {reason}")


class PaperBroker:
    """OrderGateway implementation that simulates fills.

    Attributes:
        account: Paper account credited with realised PnL
        orders: Every acknowledged order, in submission order
    """

    def __init__(self, account: PaperAccount):
        self.account = account
        self.orders: List[OrderAck] = []
        self._positions: Dict[str, PaperPosition] = {}
        self._prices: Dict[str, Decimal] = {}
        self._timestamps: Dict[str, int] = {}
        self._resting: Dict[str, List[OrderAck]] = {}
        self._next_id = 1

    # =========================================================================
    # Market state
    # =========================================================================

    def update_price(self, symbol: str, price: Union[Decimal, float], timestamp: int = 0) -> None:
        """Set the price market orders on ``symbol`` fill at."""
        self._prices[symbol] = Decimal(str(price))
        self._timestamps[symbol] = timestamp

    def last_price(self, symbol: str) -> Optional[Decimal]:
        return self._prices.get(symbol)

    def get_position(self, symbol: str) -> PaperPosition:
        """Copy of the paper position for ``symbol`` (FLAT when unseen)."""
        return self._ensure_position(symbol).model_copy()

    def update_position(self, symbol: str, **updates: Any) -> PaperPosition:
        """Apply trailing-stop bookkeeping to the position for ``symbol``."""
        position = self._ensure_position(symbol)
        for field, value in updates.items():
            setattr(position, field, value)
        return position.model_copy()

    def resting_orders(self, symbol: str) -> List[OrderAck]:
        return list(self._resting.get(symbol, []))

    def unrealized_pnl(self, symbol: Optional[str] = None) -> Decimal:
        """Unrealized PnL at the last price, for one symbol or all of them."""
        symbols = [symbol] if symbol is not None else list(self._positions)
        total = ZERO
        for sym in symbols:
            price = self._prices.get(sym)
            if price is not None and sym in self._positions:
                total += self._positions[sym].unrealized_pnl(price)
        return total

    # =========================================================================
    # OrderGateway
    # =========================================================================

    async def create_order(
        self,
        symbol: str,
        side: Union[OrderSide, str],
        order_type: Union[OrderType, str],
        amount: Decimal,
        price: Optional[Decimal] = None,
        reduce_only: bool = False,
        params: Optional[Dict[str, Any]] = None,
    ) -> OrderAck:
        """Fill or rest an order.

        Raises:
            PaperOrderRejected: On invalid quantity, missing price, an entry
                while a position is open, or a reduce-only order with
                nothing to reduce
        """
        side = OrderSide(side)
        order_type = OrderType(order_type)
        amount = Decimal(str(amount))
        if amount <= 0:
            raise PaperOrderRejected("invalid_quantity", symbol)

        if order_type == OrderType.MARKET:
            return self._fill_market(symbol, side, amount, reduce_only)
        if order_type in (OrderType.STOP, OrderType.TAKE_PROFIT):
            return self._rest_protective(symbol, side, order_type, amount, price, reduce_only)
        raise PaperOrderRejected(f"unsupported_order_type:{order_type.value}", symbol)

    async def fetch_position(self, symbol: str) -> Optional[Position]:
        position = self._positions.get(symbol)
        if position is None or not position.is_open:
            return None
        price = self._prices.get(symbol)
        return Position(
            symbol=symbol,
            side=position.side,
            contracts=position.size,
            entry_price=position.avg_entry_price or ZERO,
            unrealized_pnl=position.unrealized_pnl(price) if price is not None else ZERO,
        )

    async def fetch_account_state(self) -> AccountState:
        positions = []
        for symbol in self._positions:
            position = await self.fetch_position(symbol)
            if position is not None:
                positions.append(position)
        return AccountState(
            balance_usdt=self.account.balance + self.unrealized_pnl(),
            positions=tuple(positions),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _ensure_position(self, symbol: str) -> PaperPosition:
        if symbol not in self._positions:
            self._positions[symbol] = PaperPosition(symbol=symbol)
        return self._positions[symbol]

    def _fill_price(self, symbol: str) -> Decimal:
        price = self._prices.get(symbol)
        if price is None:
            raise PaperOrderRejected("no_market_price", symbol)
        return price

    def _ack(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        amount: Decimal,
        price: Optional[Decimal],
        reduce_only: bool,
        status: str,
    ) -> OrderAck:
        ack = OrderAck(
            order_id=f"paper-{self._next_id}",
            symbol=symbol,
            side=side,
            order_type=order_type,
            amount=amount,
            price=price,
            reduce_only=reduce_only,
            status=status,
        )
        self._next_id += 1
        self.orders.append(ack)
        return ack

    def _fill_market(
        self,
        symbol: str,
        side: OrderSide,
        amount: Decimal,
        reduce_only: bool,
    ) -> OrderAck:
        position = self._ensure_position(symbol)
        fill_price = self._fill_price(symbol)

        closes_long = position.side == PositionSide.LONG and side == OrderSide.SELL
        closes_short = position.side == PositionSide.SHORT and side == OrderSide.BUY

        if reduce_only or closes_long or closes_short:
            if not position.is_open or not (closes_long or closes_short):
                raise PaperOrderRejected("no_position_to_close", symbol)
            self._close(position, min(amount, position.size), fill_price)
            return self._ack(symbol, side, OrderType.MARKET, amount, fill_price, reduce_only, "closed")

        if position.is_open:
            raise PaperOrderRejected("already_in_position", symbol)

        position.side = PositionSide.LONG if side == OrderSide.BUY else PositionSide.SHORT
        position.size = amount
        position.avg_entry_price = fill_price
        position.peak_price = fill_price
        position.trough_price = fill_price
        position.trailing_stop_price = None
        position.is_trailing_active = False

        logger.info(
            "paper_broker.position_opened",
            symbol=symbol,
            side=position.side.value,
            size=str(amount),
            price=str(fill_price),
        )
        return self._ack(symbol, side, OrderType.MARKET, amount, fill_price, False, "filled")

    def _rest_protective(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        amount: Decimal,
        price: Optional[Decimal],
        reduce_only: bool,
    ) -> OrderAck:
        if price is None:
            raise PaperOrderRejected("missing_trigger_price", symbol)
        position = self._ensure_position(symbol)
        if not reduce_only or not position.is_open:
            raise PaperOrderRejected("no_position_to_protect", symbol)

        price = Decimal(str(price))
        if order_type == OrderType.STOP:
            position.stop_loss_price = price
        else:
            position.take_profit_price = price

        ack = self._ack(symbol, side, order_type, amount, price, True, "open")
        self._resting.setdefault(symbol, []).append(ack)
        return ack

    def _close(self, position: PaperPosition, quantity: Decimal, exit_price: Decimal) -> None:
        entry_price = position.avg_entry_price or exit_price
        if position.side == PositionSide.LONG:
            pnl = (exit_price - entry_price) * quantity
        else:
            pnl = (entry_price - exit_price) * quantity

        trade = ClosedTrade(
            symbol=position.symbol,
            side=position.side,
            size=quantity,
            entry_price=entry_price,
            exit_price=exit_price,
            realized_pnl=pnl,
            timestamp=self._timestamps.get(position.symbol, 0),
        )
        position.realized_pnl += pnl
        position.size -= quantity

        logger.info(
            "paper_broker.position_closed",
            symbol=position.symbol,
            side=position.side.value,
            size=str(quantity),
            entry_price=str(entry_price),
            exit_price=str(exit_price),
            realized_pnl=str(pnl),
        )

        if position.size <= 0:
            position.reset()
            self._resting.pop(position.symbol, None)

        self.account.register_closed_trade(trade)
