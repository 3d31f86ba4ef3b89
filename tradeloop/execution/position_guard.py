"""Position guard: forced stop-loss / take-profit exits and trailing stops.

Runs once per execution candle, before the strategy. Exits are not filled
directly; they become CLOSE intents that go through the risk manager and
execution engine like any other decision.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Union

import structlog

from tradeloop.core.models import (Candle, CurrentPosition, ExecutionReport,
                                   IntentType, PaperPosition, PlanAction,
                                   PositionSide, TradeIntent, TradePlan)

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")


def _dec(value: float) -> Decimal:
    return Decimal(str(value))


def get_pre_execution_skip_reason(
    plan: TradePlan,
    position: Union[CurrentPosition, PaperPosition],
) -> Optional[str]:
    """Reason a plan must not be executed against ``position``, or None.

    Reasons: already_in_position, opposite_position_open,
    no_position_to_close, invalid_quantity.
    """
    if plan.action == PlanAction.OPEN:
        if position.side == plan.position_side:
            return "already_in_position"
        if position.side != PositionSide.FLAT:
            return "opposite_position_open"
    if plan.action == PlanAction.CLOSE:
        if position.side != plan.position_side or position.size <= 0:
            return "no_position_to_close"
    if plan.amount <= 0:
        return "invalid_quantity"
    return None


def _close_intent(position: PaperPosition, reason: str) -> TradeIntent:
    is_long = position.side == PositionSide.LONG
    return TradeIntent(
        symbol=position.symbol,
        intent=IntentType.CLOSE_LONG if is_long else IntentType.CLOSE_SHORT,
        reason=reason if is_long else f"short_{reason}",
    )


def check_forced_exit(position: PaperPosition, candle: Candle) -> Optional[TradeIntent]:
    """CLOSE intent when the candle crossed the stop loss or take profit.

    The stop loss is checked first, so a candle spanning both exits on the stop.
    """
    if not position.is_open:
        return None

    is_long = position.side == PositionSide.LONG
    low, high = _dec(candle.low), _dec(candle.high)
    stop, take_profit = position.stop_loss_price, position.take_profit_price

    hit_stop = stop is not None and (low <= stop if is_long else high >= stop)
    hit_take_profit = take_profit is not None and (
        high >= take_profit if is_long else low <= take_profit
    )

    if hit_stop:
        return _close_intent(position, "stop_loss_hit")
    if hit_take_profit:
        return _close_intent(position, "take_profit_hit")
    return None


@dataclass
class TrailingStopUpdate:
    """Result of one trailing-stop evaluation.

    Attributes:
        updates: Position fields that changed (peak/trough, stop, activation)
        intent: CLOSE intent when the trailing stop was crossed
    """
    updates: Dict[str, Any] = field(default_factory=dict)
    intent: Optional[TradeIntent] = None


def evaluate_trailing_stop(
    position: PaperPosition,
    candle: Candle,
    activation_pct: Decimal,
    trail_pct: Decimal,
) -> TrailingStopUpdate:
    """Activate, ratchet and check the trailing stop for ``position``.

    Activation happens once the close moves ``activation_pct`` in the
    position's favour. While active, the stop trails the peak (long) or
    trough (short) by ``trail_pct`` and only ever tightens.
    """
    result = TrailingStopUpdate()
    entry = position.avg_entry_price
    trail_pct = max(trail_pct, ZERO)
    activation_pct = max(activation_pct, ZERO)
    if not position.is_open or entry is None or entry <= 0 or trail_pct <= 0:
        return result

    is_long = position.side == PositionSide.LONG
    close, high, low = _dec(candle.close), _dec(candle.high), _dec(candle.low)

    active = position.is_trailing_active
    barrier = entry * (ONE + activation_pct) if is_long else entry * (ONE - activation_pct)
    if not active and (close >= barrier if is_long else close <= barrier):
        active = True
        result.updates["is_trailing_active"] = True
    if not active:
        return result

    trailing_stop = position.trailing_stop_price
    if trailing_stop is None:
        trailing_stop = position.stop_loss_price

    if is_long:
        peak = max(position.peak_price or entry, high)
        if peak != position.peak_price:
            result.updates["peak_price"] = peak
        proposed = peak * (ONE - trail_pct)
        if trailing_stop is None or proposed > trailing_stop:
            trailing_stop = proposed
            result.updates["trailing_stop_price"] = trailing_stop
        triggered = low <= trailing_stop
    else:
        trough = min(position.trough_price or entry, low)
        if trough != position.trough_price:
            result.updates["trough_price"] = trough
        proposed = trough * (ONE + trail_pct)
        if trailing_stop is None or proposed < trailing_stop:
            trailing_stop = proposed
            result.updates["trailing_stop_price"] = trailing_stop
        triggered = high >= trailing_stop

    if triggered:
        result.intent = _close_intent(position, "trailing_stop_hit")
    return result


@dataclass
class GuardOutcome:
    """What the guard did on one tick.

    Attributes:
        handled: An exit was triggered; the strategy is skipped this tick
        intent: The CLOSE intent that was raised
        report: Execution report when the exit was executed
        skip_reason: Why a triggered exit was not executed
    """
    handled: bool = False
    intent: Optional[TradeIntent] = None
    report: Optional[ExecutionReport] = None
    skip_reason: Optional[str] = None


class PositionGuard:
    """Applies forced exits and trailing stops to paper positions each tick.

    Attributes:
        broker: PaperBroker holding the positions
        risk_manager: Plans the exit
        engine: Executes the exit plan
    """

    def __init__(self, broker, risk_manager, engine):
        self.broker = broker
        self.risk_manager = risk_manager
        self.engine = engine

    async def check(self, candle: Candle, account_equity: Decimal) -> GuardOutcome:
        """Evaluate and execute exits for ``candle.symbol``."""
        position = self.broker.get_position(candle.symbol)
        if not position.is_open:
            return GuardOutcome()

        intent = check_forced_exit(position, candle)
        if intent is None:
            config = self.risk_manager.config
            trailing = evaluate_trailing_stop(
                position,
                candle,
                config.trailing_activation_pct,
                config.trailing_trail_pct,
            )
            if trailing.updates:
                position = self.broker.update_position(candle.symbol, **trailing.updates)
                logger.debug(
                    "position_guard.trailing_updated",
                    symbol=candle.symbol,
                    **{k: str(v) for k, v in trailing.updates.items()},
                )
            intent = trailing.intent

        if intent is None:
            return GuardOutcome()

        logger.info(
            "position_guard.exit_triggered",
            symbol=candle.symbol,
            intent=intent.intent.value,
            reason=intent.reason,
            timestamp=candle.timestamp,
        )

        current = position.to_current()
        plan = self.risk_manager.plan(intent, candle.close, account_equity, current)
        if plan is None:
            logger.warning("position_guard.exit_plan_rejected", symbol=candle.symbol, reason=intent.reason)
            return GuardOutcome(handled=True, intent=intent, skip_reason="exit_plan_rejected")

        skip_reason = get_pre_execution_skip_reason(plan, current)
        if skip_reason:
            logger.warning("position_guard.exit_skipped", symbol=candle.symbol, skip_reason=skip_reason)
            return GuardOutcome(handled=True, intent=intent, skip_reason=skip_reason)

        report = await self.engine.execute(plan)
        return GuardOutcome(handled=True, intent=intent, report=report)
