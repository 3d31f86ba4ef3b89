"""Unit tests for the ccxt gateway, candle fetcher and retry decorator."""
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import ccxt.async_support as ccxt
import pytest

from tradeloop.core.models import OrderSide, OrderType, PositionSide
from tradeloop.core.timeframes import MINUTE_MS
from tradeloop.data.fetcher import CcxtCandleFetcher
from tradeloop.exchange.ccxt_gateway import (CcxtOrderGateway,
                                             create_exchange, with_retry)

SYMBOL = "BTC/USDT"
BASE_TS = 1735689600000


@pytest.fixture
def mock_exchange():
    exchange = MagicMock()
    exchange.has = {"fetchPositions": True}
    exchange.create_order = AsyncMock(return_value={"id": "123", "status": "open"})
    exchange.fetch_positions = AsyncMock(return_value=[])
    exchange.fetch_balance = AsyncMock(return_value={"total": {"USDT": 1500.5}})
    exchange.fetch_ohlcv = AsyncMock(return_value=[])
    exchange.close = AsyncMock()
    return exchange


@pytest.fixture
def no_sleep():
    with patch("tradeloop.exchange.ccxt_gateway.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


# =============================================================================
# Retry
# =============================================================================

class TestWithRetry:
    """Test the retry decorator."""

    @pytest.mark.asyncio
    async def test_retries_network_errors(self, no_sleep):
        calls = []

        @with_retry(max_retries=3, base_delay=1.0)
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ccxt.NetworkError("timeout")
            return "ok"

        assert await flaky() == "ok"
        assert len(calls) == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, no_sleep):
        fn = AsyncMock(side_effect=ccxt.RequestTimeout("slow"))
        fn.__name__ = "fetch"
        wrapped = with_retry(max_retries=2)(fn)

        with pytest.raises(ccxt.RequestTimeout):
            await wrapped()
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self, no_sleep):
        fn = AsyncMock(side_effect=ccxt.InsufficientFunds("broke"))
        fn.__name__ = "create_order"
        wrapped = with_retry()(fn)

        with pytest.raises(ccxt.InsufficientFunds):
            await wrapped()
        assert fn.await_count == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limit_backs_off_longer(self, no_sleep):
        fn = AsyncMock(side_effect=[ccxt.RateLimitExceeded("429"), "ok"])
        fn.__name__ = "fetch"
        assert await with_retry()(fn)() == "ok"
        assert no_sleep.await_args.args[0] == 60.0


# =============================================================================
# Order Gateway
# =============================================================================

class TestCcxtOrderGateway:
    """Test order mapping and account parsing."""

    @pytest.mark.asyncio
    async def test_market_order(self, mock_exchange):
        gateway = CcxtOrderGateway(mock_exchange)
        ack = await gateway.create_order(SYMBOL, OrderSide.BUY, OrderType.MARKET, Decimal("0.5"))

        kwargs = mock_exchange.create_order.await_args.kwargs
        assert kwargs["type"] == "market"
        assert kwargs["side"] == "buy"
        assert kwargs["amount"] == 0.5
        assert kwargs["price"] is None
        assert kwargs["params"] == {}
        assert ack.order_id == "123"
        assert ack.status == "open"

    @pytest.mark.asyncio
    async def test_stop_order_uses_trigger_params(self, mock_exchange):
        gateway = CcxtOrderGateway(mock_exchange)
        await gateway.create_order(
            SYMBOL, OrderSide.SELL, OrderType.STOP, Decimal("0.5"),
            price=Decimal("99"), reduce_only=True, params={"positionSide": "LONG"},
        )

        kwargs = mock_exchange.create_order.await_args.kwargs
        assert kwargs["type"] == "market"
        assert kwargs["price"] is None
        assert kwargs["params"] == {"positionSide": "LONG", "reduceOnly": True, "stopLossPrice": 99.0}

    @pytest.mark.asyncio
    async def test_take_profit_order(self, mock_exchange):
        gateway = CcxtOrderGateway(mock_exchange)
        await gateway.create_order(
            SYMBOL, "sell", "take-profit", Decimal("1"), price=Decimal("102"), reduce_only=True
        )
        params = mock_exchange.create_order.await_args.kwargs["params"]
        assert params["takeProfitPrice"] == 102.0

    @pytest.mark.asyncio
    async def test_protective_order_requires_price(self, mock_exchange):
        gateway = CcxtOrderGateway(mock_exchange)
        with pytest.raises(ValueError):
            await gateway.create_order(SYMBOL, OrderSide.SELL, OrderType.STOP, Decimal("1"))
        mock_exchange.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exchange_error_propagates(self, mock_exchange):
        mock_exchange.create_order.side_effect = ccxt.InvalidOrder("bad order")
        gateway = CcxtOrderGateway(mock_exchange)
        with pytest.raises(ccxt.InvalidOrder):
            await gateway.create_order(SYMBOL, OrderSide.BUY, OrderType.MARKET, Decimal("1"))

    @pytest.mark.asyncio
    async def test_order_timeout_not_retried(self, mock_exchange, no_sleep):
        mock_exchange.create_order.side_effect = ccxt.RequestTimeout("slow")
        gateway = CcxtOrderGateway(mock_exchange)
        with pytest.raises(ccxt.RequestTimeout):
            await gateway.create_order(SYMBOL, OrderSide.BUY, OrderType.MARKET, Decimal("1"))
        assert mock_exchange.create_order.await_count == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_order_unavailable_not_retried(self, mock_exchange, no_sleep):
        mock_exchange.create_order.side_effect = ccxt.ExchangeNotAvailable("502")
        gateway = CcxtOrderGateway(mock_exchange)
        with pytest.raises(ccxt.ExchangeNotAvailable):
            await gateway.create_order(SYMBOL, OrderSide.BUY, OrderType.MARKET, Decimal("1"))
        assert mock_exchange.create_order.await_count == 1

    @pytest.mark.asyncio
    async def test_order_retried_during_maintenance(self, mock_exchange, no_sleep):
        mock_exchange.create_order.side_effect = [
            ccxt.OnMaintenance("maintenance"),
            {"id": "1", "status": "open"},
        ]
        gateway = CcxtOrderGateway(mock_exchange)
        ack = await gateway.create_order(SYMBOL, OrderSide.BUY, OrderType.MARKET, Decimal("1"))
        assert ack.order_id == "1"
        assert mock_exchange.create_order.await_count == 2

    @pytest.mark.asyncio
    async def test_fetch_position(self, mock_exchange):
        mock_exchange.fetch_positions.return_value = [
            {"symbol": SYMBOL, "side": "short", "contracts": 2, "entryPrice": 100, "unrealizedPnl": "-5", "leverage": 3},
        ]
        position = await CcxtOrderGateway(mock_exchange).fetch_position(SYMBOL)

        assert position.side == PositionSide.SHORT
        assert position.contracts == Decimal("2")
        assert position.entry_price == Decimal("100")
        assert position.unrealized_pnl == Decimal("-5")
        assert position.leverage == Decimal("3")

    @pytest.mark.asyncio
    async def test_fetch_position_flat(self, mock_exchange):
        mock_exchange.fetch_positions.return_value = [{"symbol": SYMBOL, "contracts": 0}]
        assert await CcxtOrderGateway(mock_exchange).fetch_position(SYMBOL) is None

    @pytest.mark.asyncio
    async def test_fetch_account_state(self, mock_exchange):
        mock_exchange.fetch_positions.return_value = [
            {"symbol": SYMBOL, "side": "long", "contracts": 1, "entryPrice": 100},
        ]
        state = await CcxtOrderGateway(mock_exchange).fetch_account_state()

        assert state.balance_usdt == Decimal("1500.5")
        assert len(state.open_positions) == 1
        assert state.positions[0].leverage == Decimal("1")

    @pytest.mark.asyncio
    async def test_account_state_without_position_support(self, mock_exchange):
        mock_exchange.has = {"fetchPositions": False}
        state = await CcxtOrderGateway(mock_exchange).fetch_account_state()
        assert state.positions == ()
        mock_exchange.fetch_positions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close(self, mock_exchange):
        await CcxtOrderGateway(mock_exchange).close()
        mock_exchange.close.assert_awaited_once()

    def test_create_exchange_unknown_id(self):
        with pytest.raises(ValueError):
            create_exchange("not_a_real_exchange")


# =============================================================================
# Candle Fetcher
# =============================================================================

class TestCcxtCandleFetcher:
    """Test OHLCV row conversion."""

    @pytest.mark.asyncio
    async def test_rows_bucketed_and_deduplicated(self, mock_exchange):
        mock_exchange.fetch_ohlcv.return_value = [
            [BASE_TS + MINUTE_MS, 2, 3, 1, 2.5, 10],
            [BASE_TS, 1, 2, 0.5, 1.5, 5],
            [BASE_TS + 30_000, 1, 2, 0.5, 1.8, None],
        ]
        fetcher = CcxtCandleFetcher(mock_exchange, clock=lambda: BASE_TS + 10 * MINUTE_MS)

        candles = await fetcher(SYMBOL, "1m", 10)

        assert [c.timestamp for c in candles] == [BASE_TS, BASE_TS + MINUTE_MS]
        assert candles[0].close == 1.8
        assert candles[0].volume == 0.0
        assert candles[1].timeframe == "1m"
        mock_exchange.fetch_ohlcv.assert_awaited_once_with(SYMBOL, "1m", since=None, limit=10)

    @pytest.mark.asyncio
    async def test_forming_candle_dropped(self, mock_exchange):
        mock_exchange.fetch_ohlcv.return_value = [
            [BASE_TS, 1, 2, 0.5, 1.5, 5],
            [BASE_TS + MINUTE_MS, 2, 3, 1, 2.5, 10],
        ]
        fetcher = CcxtCandleFetcher(mock_exchange, clock=lambda: BASE_TS + MINUTE_MS + 5_000)
        candles = await fetcher(SYMBOL, "1m", 10)
        assert [c.timestamp for c in candles] == [BASE_TS]

    @pytest.mark.asyncio
    async def test_keep_forming_candle(self, mock_exchange):
        mock_exchange.fetch_ohlcv.return_value = [[BASE_TS, 1, 2, 0.5, 1.5, 5]]
        fetcher = CcxtCandleFetcher(mock_exchange, closed_only=False, clock=lambda: BASE_TS)
        assert len(await fetcher(SYMBOL, "1m", 10)) == 1
