"""Risk manager: turns a directional intent into a sized, bracketed trade plan.

CRITICAL: sizing errors translate directly into losses. Any change here
must keep ``plan`` pure and deterministic (no clock reads, no I/O).
"""
from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import NoReturn, Optional, Tuple, Union

import structlog

from tradeloop.core.config import RiskConfig
from tradeloop.core.exceptions import NoPositionToClose, SizingUnavailable
from tradeloop.core.models import (AccountState, CurrentPosition, IntentType,
                                   OrderSide, PlanAction, Position,
                                   PositionSide, TradeIntent, TradePlan)

logger = structlog.get_logger(__name__)

Number = Union[int, float, Decimal]

PRICE_QUANT = Decimal("0.01")
SIZE_QUANT = Decimal("0.000001")
ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def _assert_never(value: NoReturn) -> NoReturn:
    raise AssertionError(f"Unhandled intent type: {value!r}")


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class EffectiveRisk:
    """Monetary risk a plan actually carries after clamping.

    Attributes:
        amount: ``quantity * |entry - stop|`` in quote currency
        fraction: ``amount / equity``
    """
    amount: Decimal
    fraction: Decimal


class RiskManager:
    """
    Risk-based position sizing with bracket prices.

    Sizing:
    - risk capital = equity * risk_per_trade_pct
    - size = risk capital / |entry - stop|
    - clamped to [min_position_size, max_position_size]
    - capped at equity * max_leverage / price
    - rounded down to 6 decimals

    Stop and take-profit prices are rounded to 2 decimals. The plan keeps
    the unrounded last price as entry_price, the reference the bracket and
    size were computed from; the order itself goes out at market.

    The clamp is authoritative: when min/max bounds or the leverage cap move
    the size, the realised risk differs from risk_per_trade_pct. Use
    ``effective_risk`` to see what a plan really risks.
    """

    def __init__(self, config: Optional[RiskConfig] = None):
        self.config = config or RiskConfig()

    # =========================================================================
    # Public API
    # =========================================================================

    def plan(
        self,
        intent: TradeIntent,
        last_price: Number,
        account: Union[Number, AccountState],
        current_position: Optional[Union[CurrentPosition, Position]] = None,
    ) -> Optional[TradePlan]:
        """
        Build a trade plan for ``intent`` at ``last_price``.

        Args:
            intent: Strategy decision
            last_price: Current market price
            account: Account equity, or an AccountState snapshot
            current_position: Exposure on the intent's symbol; read from
                ``account`` when omitted and ``account`` is an AccountState

        Returns:
            TradePlan, or None when no trade should be placed
        """
        kind = intent.intent
        if kind == IntentType.NO_ACTION:
            return None

        equity, open_positions, current = self._resolve_account(
            intent.symbol, account, current_position
        )

        try:
            if kind in (IntentType.OPEN_LONG, IntentType.OPEN_SHORT):
                side = PositionSide.LONG if kind == IntentType.OPEN_LONG else PositionSide.SHORT
                plan = self._plan_open(intent, side, _to_decimal(last_price), equity, open_positions, current)
            elif kind in (IntentType.CLOSE_LONG, IntentType.CLOSE_SHORT):
                side = PositionSide.LONG if kind == IntentType.CLOSE_LONG else PositionSide.SHORT
                plan = self._plan_close(intent, side, _to_decimal(last_price), current)
            else:
                _assert_never(kind)
        except SizingUnavailable as e:
            logger.debug(
                "risk_manager.sizing_unavailable",
                symbol=intent.symbol,
                intent=kind.value,
                reason=str(e),
            )
            return None
        except NoPositionToClose as e:
            logger.debug(
                "risk_manager.no_position_to_close",
                symbol=intent.symbol,
                intent=kind.value,
                reason=str(e),
            )
            return None

        if plan is not None:
            logger.info(
                "risk_manager.plan_created",
                symbol=plan.symbol,
                action=plan.action.value,
                side=plan.side.value,
                amount=str(plan.amount),
                entry_price=str(plan.entry_price),
                stop_loss=str(plan.stop_loss_price) if plan.stop_loss_price else None,
                take_profit=str(plan.take_profit_price) if plan.take_profit_price else None,
                reason=plan.reason,
            )
        return plan

    def effective_risk(self, plan: TradePlan, equity: Number) -> EffectiveRisk:
        """Report the monetary risk ``plan`` carries and its share of equity."""
        if plan.stop_loss_price is None or not plan.is_open:
            return EffectiveRisk(amount=ZERO, fraction=ZERO)

        amount = plan.amount * abs(plan.entry_price - plan.stop_loss_price)
        equity = _to_decimal(equity)
        fraction = amount / equity if equity.is_finite() and equity > 0 else ZERO
        return EffectiveRisk(amount=amount, fraction=fraction)

    # =========================================================================
    # Bracket prices and sizing
    # =========================================================================

    def calculate_stop_loss(self, price: Decimal, side: PositionSide) -> Decimal:
        """Stop price ``sl_pct`` percent away from ``price``, on the losing side."""
        fraction = self.config.sl_pct / HUNDRED
        factor = ONE - fraction if side == PositionSide.LONG else ONE + fraction
        return (price * factor).quantize(PRICE_QUANT, rounding=ROUND_HALF_UP)

    def calculate_take_profit(self, price: Decimal, side: PositionSide) -> Decimal:
        """Take-profit price ``tp_pct`` percent away from ``price``, on the winning side."""
        fraction = self.config.tp_pct / HUNDRED
        factor = ONE + fraction if side == PositionSide.LONG else ONE - fraction
        return (price * factor).quantize(PRICE_QUANT, rounding=ROUND_HALF_UP)

    def calculate_position_size(
        self,
        equity: Decimal,
        entry_price: Decimal,
        stop_loss_price: Decimal,
    ) -> Decimal:
        """
        Size a position so that hitting the stop loses ``risk_per_trade_pct`` of equity.

        Raises:
            SizingUnavailable: If no positive, finite size can be produced
        """
        if not equity.is_finite() or not entry_price.is_finite():
            raise SizingUnavailable(f"Non-finite input (equity={equity}, entry={entry_price})")

        stop_distance = abs(entry_price - stop_loss_price)
        if stop_distance <= 0:
            raise SizingUnavailable(f"Stop distance is zero at price {entry_price}")

        risk_capital = equity * self.config.risk_per_trade_pct
        if risk_capital <= 0:
            raise SizingUnavailable(f"No risk capital available (equity={equity})")

        try:
            size = risk_capital / stop_distance
        except (ArithmeticError, InvalidOperation) as e:
            raise SizingUnavailable(f"Size calculation failed: {e}") from e
        if not size.is_finite() or size <= 0:
            raise SizingUnavailable(f"Raw size is not positive: {size}")

        size = min(max(size, self.config.min_position_size), self.config.max_position_size)

        # Cap notional at equity * max_leverage
        max_size = equity * self.config.max_leverage / entry_price
        size = min(size, max_size)

        size = size.quantize(SIZE_QUANT, rounding=ROUND_DOWN)
        if size <= 0:
            raise SizingUnavailable(f"Size rounds to zero (capped at {max_size})")

        logger.debug(
            "risk_manager.position_size_calculated",
            equity=str(equity),
            entry_price=str(entry_price),
            stop_loss=str(stop_loss_price),
            risk_capital=str(risk_capital),
            quantity=str(size),
        )
        return size

    # =========================================================================
    # Internals
    # =========================================================================

    def _plan_open(
        self,
        intent: TradeIntent,
        side: PositionSide,
        price: Decimal,
        equity: Decimal,
        open_positions: int,
        current: CurrentPosition,
    ) -> Optional[TradePlan]:
        if open_positions >= self.config.max_positions:
            logger.debug(
                "risk_manager.max_positions_reached",
                symbol=intent.symbol,
                open_positions=open_positions,
                max_positions=self.config.max_positions,
            )
            return None
        if current.is_open:
            logger.debug(
                "risk_manager.position_already_open",
                symbol=intent.symbol,
                current_side=current.side.value,
            )
            return None
        if not price.is_finite() or price <= 0:
            raise SizingUnavailable(f"Invalid price: {price}")

        stop_loss = self.calculate_stop_loss(price, side)
        take_profit = self.calculate_take_profit(price, side)
        low, high = (stop_loss, take_profit) if side == PositionSide.LONG else (take_profit, stop_loss)
        if not low < price < high:
            raise SizingUnavailable(
                f"Bracket collapsed at price {price} (stop={stop_loss}, tp={take_profit})"
            )

        quantity = self.calculate_position_size(equity, price, stop_loss)

        return TradePlan(
            symbol=intent.symbol,
            action=PlanAction.OPEN,
            side=OrderSide.BUY if side == PositionSide.LONG else OrderSide.SELL,
            position_side=side,
            amount=quantity,
            entry_price=price,
            leverage=self.config.max_leverage,
            stop_loss_price=stop_loss,
            take_profit_price=take_profit,
            reduce_only=False,
            reason=intent.reason,
        )

    def _plan_close(
        self,
        intent: TradeIntent,
        side: PositionSide,
        price: Decimal,
        current: CurrentPosition,
    ) -> TradePlan:
        if not current.is_open or current.side != side:
            raise NoPositionToClose(
                f"No {side.value} position on {intent.symbol} (current={current.side.value})"
            )
        if not price.is_finite() or price <= 0:
            raise SizingUnavailable(f"Invalid price: {price}")

        return TradePlan(
            symbol=intent.symbol,
            action=PlanAction.CLOSE,
            side=OrderSide.SELL if side == PositionSide.LONG else OrderSide.BUY,
            position_side=side,
            amount=current.size,
            entry_price=price,
            leverage=current.leverage,
            reduce_only=True,
            reason=intent.reason,
        )

    @staticmethod
    def _resolve_account(
        symbol: str,
        account: Union[Number, AccountState],
        current_position: Optional[Union[CurrentPosition, Position]],
    ) -> Tuple[Decimal, int, CurrentPosition]:
        if isinstance(current_position, Position):
            current = CurrentPosition.from_position(current_position)
        elif current_position is not None:
            current = current_position
        elif isinstance(account, AccountState):
            current = CurrentPosition.from_position(account.position_for(symbol))
        else:
            current = CurrentPosition.flat()

        if isinstance(account, AccountState):
            return account.balance_usdt, len(account.open_positions), current

        return _to_decimal(account), 1 if current.is_open else 0, current


def create_risk_manager(config: Optional[RiskConfig] = None) -> RiskManager:
    """Factory function to create a configured RiskManager instance."""
    return RiskManager(config)
