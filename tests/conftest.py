"""Pytest fixtures and utilities for the tradeloop test suite."""
import itertools
from decimal import Decimal
from typing import List, Optional, Sequence
from unittest.mock import AsyncMock

import pytest

from tradeloop.core.config import RiskConfig
from tradeloop.core.models import (AccountState, Candle, IntentType, OrderAck,
                                   OrderType, TradeIntent)
from tradeloop.core.timeframes import MINUTE_MS
from tradeloop.execution.paper_account import PaperAccount
from tradeloop.execution.paper_broker import PaperBroker
from tradeloop.risk.risk_manager import RiskManager

# 2025-01-01 00:00:00 UTC (a Wednesday)
BASE_TS = 1735689600000
SYMBOL = "BTC/USDT"


def build_candle(
    index: int,
    close: float,
    timeframe: str = "1m",
    tf_ms: int = MINUTE_MS,
    high: Optional[float] = None,
    low: Optional[float] = None,
    open: Optional[float] = None,
    volume: float = 1.0,
    symbol: str = SYMBOL,
    base_ts: int = BASE_TS,
) -> Candle:
    """Candle ``index`` buckets after ``base_ts``."""
    return Candle(
        symbol=symbol,
        timeframe=timeframe,
        timestamp=base_ts + index * tf_ms,
        open=close if open is None else open,
        high=close if high is None else high,
        low=close if low is None else low,
        close=close,
        volume=volume,
    )


def build_series(closes: Sequence[float], timeframe: str = "1m", tf_ms: int = MINUTE_MS, **kwargs) -> List[Candle]:
    return [build_candle(i, c, timeframe=timeframe, tf_ms=tf_ms, **kwargs) for i, c in enumerate(closes)]


# =============================================================================
# Market Data Fixtures
# =============================================================================

@pytest.fixture
def make_candle():
    """Factory for aligned 1m candles."""
    return build_candle


@pytest.fixture
def make_series():
    """Factory for consecutive aligned candles from a list of closes."""
    return build_series


@pytest.fixture
def rising_candles():
    """60 one-minute candles climbing by 1 from 100."""
    return build_series([100.0 + i for i in range(60)])


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def risk_config():
    """Risk configuration used across the risk and execution tests."""
    return RiskConfig(
        max_leverage=Decimal("5"),
        risk_per_trade_pct=Decimal("0.01"),
        max_positions=1,
        sl_pct=Decimal("1"),
        tp_pct=Decimal("2"),
        min_position_size=Decimal("0.001"),
        max_position_size=Decimal("10"),
        trailing_activation_pct=Decimal("0.01"),
        trailing_trail_pct=Decimal("0.005"),
    )


@pytest.fixture
def risk_manager(risk_config):
    return RiskManager(risk_config)


# =============================================================================
# Intent Fixtures
# =============================================================================

@pytest.fixture
def open_long_intent():
    return TradeIntent(symbol=SYMBOL, intent=IntentType.OPEN_LONG, reason="test_entry")


@pytest.fixture
def open_short_intent():
    return TradeIntent(symbol=SYMBOL, intent=IntentType.OPEN_SHORT, reason="test_entry")


@pytest.fixture
def close_long_intent():
    return TradeIntent(symbol=SYMBOL, intent=IntentType.CLOSE_LONG, reason="test_exit")


# =============================================================================
# Gateway / Paper Fixtures
# =============================================================================

@pytest.fixture
def mock_gateway():
    """AsyncMock order gateway acknowledging orders as ord-1, ord-2, ..."""
    counter = itertools.count(1)

    async def create_order(symbol, side, order_type, amount, price=None, reduce_only=False, params=None):
        return OrderAck(
            order_id=f"ord-{next(counter)}",
            symbol=symbol,
            side=side,
            order_type=OrderType(order_type),
            amount=amount,
            price=price,
            reduce_only=reduce_only,
        )

    gateway = AsyncMock()
    gateway.create_order = AsyncMock(side_effect=create_order)
    gateway.fetch_position = AsyncMock(return_value=None)
    gateway.fetch_account_state = AsyncMock(
        return_value=AccountState(balance_usdt=Decimal("10000"))
    )
    return gateway


@pytest.fixture
def paper_account():
    return PaperAccount(Decimal("10000"))


@pytest.fixture
def paper_broker(paper_account):
    broker = PaperBroker(paper_account)
    broker.update_price(SYMBOL, Decimal("100"), BASE_TS)
    return broker
