"""Unit tests for the risk manager."""
from decimal import Decimal

import pytest

from tradeloop.core.config import RiskConfig
from tradeloop.core.exceptions import SizingUnavailable
from tradeloop.core.models import (AccountState, CurrentPosition, IntentType,
                                   OrderSide, PlanAction, Position,
                                   PositionSide, TradeIntent)
from tradeloop.risk.risk_manager import RiskManager, create_risk_manager

SYMBOL = "BTC/USDT"


def _long(size):
    return CurrentPosition(side=PositionSide.LONG, size=Decimal(size))


# =============================================================================
# Opening Plans
# =============================================================================

class TestOpenPlans:
    """Test sizing and bracket prices for opening intents."""

    def test_open_long_reference_case(self, risk_manager, open_long_intent):
        plan = risk_manager.plan(open_long_intent, 100, Decimal("10000"), CurrentPosition.flat())

        assert plan is not None
        assert plan.action == PlanAction.OPEN
        assert plan.side == OrderSide.BUY
        assert plan.position_side == PositionSide.LONG
        assert plan.stop_loss_price == Decimal("99.00")
        assert plan.take_profit_price == Decimal("102.00")
        assert plan.quantity > 0
        assert not plan.reduce_only
        assert plan.reason == "test_entry"

    def test_open_long_size_clamped_to_max(self, risk_manager, open_long_intent):
        # raw size = 100 / 1 = 100, clamped to max_position_size
        plan = risk_manager.plan(open_long_intent, 100, Decimal("10000"))
        assert plan.amount == Decimal("10")

    def test_open_short_brackets(self, risk_manager, open_short_intent):
        plan = risk_manager.plan(open_short_intent, Decimal("100"), Decimal("10000"))
        assert plan.side == OrderSide.SELL
        assert plan.position_side == PositionSide.SHORT
        assert plan.stop_loss_price == Decimal("101.00")
        assert plan.take_profit_price == Decimal("98.00")

    def test_unclamped_size(self, risk_manager, open_long_intent):
        # risk 100 over a stop distance of 300 -> 0.333333
        plan = risk_manager.plan(open_long_intent, Decimal("30000"), Decimal("10000"))
        assert plan.stop_loss_price == Decimal("29700.00")
        assert plan.amount == Decimal("0.333333")

    def test_leverage_cap(self, open_long_intent):
        manager = RiskManager(RiskConfig(
            _env_file=None,
            max_leverage=Decimal("1"),
            min_position_size=Decimal("5"),
            max_position_size=Decimal("100"),
        ))
        # min size 5 at price 100 is 500 notional; equity 200 caps at 2
        plan = manager.plan(open_long_intent, Decimal("100"), Decimal("200"))
        assert plan.amount == Decimal("2")

    def test_price_rounding_half_up(self, risk_manager, open_long_intent):
        plan = risk_manager.plan(open_long_intent, Decimal("100.005"), Decimal("10000"))
        # 100.005 * 0.99 = 99.00495, 100.005 * 1.02 = 102.0051
        assert plan.stop_loss_price == Decimal("99.00")
        assert plan.take_profit_price == Decimal("102.01")

    def test_entry_price_kept_exact(self, risk_manager, open_long_intent):
        plan = risk_manager.plan(open_long_intent, Decimal("100.123"), Decimal("10000"))
        # 100.123 * 0.99 = 99.12177, 100.123 * 1.02 = 102.12546
        assert plan.entry_price == Decimal("100.123")
        assert plan.stop_loss_price == Decimal("99.12")
        assert plan.take_profit_price == Decimal("102.13")

    def test_leverage_carried_on_plan(self, risk_manager, open_long_intent):
        plan = risk_manager.plan(open_long_intent, 100, 10000)
        assert plan.leverage == Decimal("5")

    def test_already_in_position(self, risk_manager, open_long_intent):
        assert risk_manager.plan(open_long_intent, 100, 10000, _long("1")) is None

    def test_max_positions_from_account_state(self, risk_manager, open_long_intent):
        state = AccountState(
            balance_usdt=Decimal("10000"),
            positions=(Position(symbol="ETH/USDT", side=PositionSide.LONG, contracts=Decimal("1")),),
        )
        assert risk_manager.plan(open_long_intent, 100, state) is None

    def test_zero_equity_returns_none(self, risk_manager, open_long_intent):
        assert risk_manager.plan(open_long_intent, 100, Decimal("0")) is None

    def test_nan_equity_returns_none(self, risk_manager, open_long_intent):
        assert risk_manager.plan(open_long_intent, 100, float("nan"), CurrentPosition.flat()) is None
        assert risk_manager.plan(open_long_intent, 100, Decimal("Infinity")) is None

    def test_invalid_price_returns_none(self, risk_manager, open_long_intent):
        assert risk_manager.plan(open_long_intent, 0, Decimal("10000")) is None

    def test_collapsed_bracket_returns_none(self, risk_manager, open_long_intent):
        # at 0.1 both brackets round back onto the entry price
        assert risk_manager.plan(open_long_intent, Decimal("0.10"), Decimal("10000")) is None

    def test_no_action_returns_none(self, risk_manager):
        intent = TradeIntent.no_action(SYMBOL, "no_signal")
        assert risk_manager.plan(intent, 100, 10000) is None


# =============================================================================
# Closing Plans
# =============================================================================

class TestClosePlans:
    """Test closing intents."""

    def test_close_long(self, risk_manager, close_long_intent):
        plan = risk_manager.plan(close_long_intent, 95, Decimal("10000"), _long("2"))

        assert plan.action == PlanAction.CLOSE
        assert plan.side == OrderSide.SELL
        assert plan.quantity == Decimal("2")
        assert plan.reduce_only
        assert plan.stop_loss_price is None
        assert plan.take_profit_price is None
        assert plan.entry_price == Decimal("95")

    def test_close_short(self, risk_manager):
        intent = TradeIntent(symbol=SYMBOL, intent=IntentType.CLOSE_SHORT)
        current = CurrentPosition(side=PositionSide.SHORT, size=Decimal("0.5"))
        plan = risk_manager.plan(intent, 95, 10000, current)
        assert plan.side == OrderSide.BUY
        assert plan.amount == Decimal("0.5")

    def test_close_without_position(self, risk_manager, close_long_intent):
        assert risk_manager.plan(close_long_intent, 95, 10000, CurrentPosition.flat()) is None

    def test_close_wrong_side(self, risk_manager, close_long_intent):
        current = CurrentPosition(side=PositionSide.SHORT, size=Decimal("1"))
        assert risk_manager.plan(close_long_intent, 95, 10000, current) is None

    def test_close_reads_position_from_account_state(self, risk_manager, close_long_intent):
        state = AccountState(
            balance_usdt=Decimal("10000"),
            positions=(Position(symbol=SYMBOL, side=PositionSide.LONG, contracts=Decimal("3")),),
        )
        plan = risk_manager.plan(close_long_intent, 95, state)
        assert plan.amount == Decimal("3")

    def test_close_carries_position_leverage(self, risk_manager, close_long_intent):
        position = Position(
            symbol=SYMBOL,
            side=PositionSide.LONG,
            contracts=Decimal("2"),
            entry_price=Decimal("100"),
            leverage=Decimal("3"),
        )
        plan = risk_manager.plan(close_long_intent, 95, 10000, position)
        assert plan.leverage == Decimal("3")

    def test_close_without_known_leverage(self, risk_manager, close_long_intent):
        plan = risk_manager.plan(close_long_intent, 95, 10000, _long("2"))
        assert plan.leverage == Decimal("1")


# =============================================================================
# Helpers
# =============================================================================

class TestSizingHelpers:
    """Test the public sizing helpers."""

    def test_zero_stop_distance(self, risk_manager):
        with pytest.raises(SizingUnavailable):
            risk_manager.calculate_position_size(Decimal("10000"), Decimal("100"), Decimal("100"))

    def test_non_finite_equity(self, risk_manager):
        with pytest.raises(SizingUnavailable):
            risk_manager.calculate_position_size(Decimal("NaN"), Decimal("100"), Decimal("99"))

    def test_effective_risk_with_nan_equity(self, risk_manager, open_long_intent):
        plan = risk_manager.plan(open_long_intent, 100, Decimal("10000"))
        assert risk_manager.effective_risk(plan, float("nan")).fraction == Decimal("0")

    def test_effective_risk_after_clamp(self, risk_manager, open_long_intent):
        plan = risk_manager.plan(open_long_intent, 100, Decimal("10000"))
        risk = risk_manager.effective_risk(plan, Decimal("10000"))
        # clamped to 10 units with a 1.00 stop distance
        assert risk.amount == Decimal("10.00")
        assert risk.fraction == Decimal("0.001")

    def test_effective_risk_of_close_plan(self, risk_manager, close_long_intent):
        plan = risk_manager.plan(close_long_intent, 95, 10000, _long("2"))
        assert risk_manager.effective_risk(plan, 10000).amount == Decimal("0")

    def test_factory(self, risk_config):
        assert create_risk_manager(risk_config).config is risk_config
