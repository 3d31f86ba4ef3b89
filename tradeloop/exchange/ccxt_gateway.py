"""ccxt-backed order gateway and retry helpers.

The gateway implements the OrderGateway contract used by the execution
engine: order submission, position lookup and account snapshot. Network
errors are retried with exponential backoff; everything else propagates.
"""
import asyncio
from decimal import Decimal
from functools import wraps
from typing import Any, Dict, Optional, Union

import ccxt.async_support as ccxt
import structlog

from tradeloop.core.models import (AccountState, OrderAck, OrderSide,
                                   OrderType, Position, PositionSide)

logger = structlog.get_logger(__name__)


class RetryConfig:
    """Configuration for retry logic."""
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_BASE_DELAY = 1.0  # seconds
    DEFAULT_MAX_DELAY = 30.0  # seconds
    DEFAULT_EXPONENTIAL_BASE = 2.0


def with_retry(
    max_retries: int = RetryConfig.DEFAULT_MAX_RETRIES,
    base_delay: float = RetryConfig.DEFAULT_BASE_DELAY,
    max_delay: float = RetryConfig.DEFAULT_MAX_DELAY,
    exponential_base: float = RetryConfig.DEFAULT_EXPONENTIAL_BASE,
    retryable_exceptions: tuple = (ccxt.NetworkError, ccxt.ExchangeNotAvailable, ccxt.RequestTimeout)
):
    """Decorator for adding retry logic with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        retryable_exceptions: Tuple of exceptions that should trigger a retry
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except ccxt.RateLimitExceeded as e:
                    # Rate limits back off much longer than transient errors
                    last_exception = e
                    if attempt >= max_retries:
                        break
                    delay = min(60.0 * (2 ** attempt), 300.0)
                    logger.warning(
                        f"{func.__name__}.rate_limit_hit",
                        attempt=attempt + 1,
                        delay=delay,
                    )
                    await asyncio.sleep(delay)
                except retryable_exceptions as e:
                    last_exception = e
                    if attempt >= max_retries:
                        break
                    delay = min(base_delay * (exponential_base ** attempt), max_delay)
                    logger.warning(
                        f"{func.__name__}.retry_attempt",
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

            logger.error(
                f"{func.__name__}.max_retries_exceeded",
                max_retries=max_retries,
                last_error=str(last_exception),
            )
            raise last_exception

        return wrapper
    return decorator


def create_exchange(
    exchange_id: str,
    api_key: str = "",
    api_secret: str = "",
    sandbox: bool = False,
    default_type: str = "spot",
):
    """Instantiate an async ccxt exchange by id."""
    try:
        exchange_class = getattr(ccxt, exchange_id)
    except AttributeError:
        raise ValueError(f"Unknown ccxt exchange id: {exchange_id}") from None

    exchange = exchange_class({
        'apiKey': api_key,
        'secret': api_secret,
        'enableRateLimit': True,
        'options': {
            'defaultType': default_type,
            'adjustForTimeDifference': True,
        },
    })
    if sandbox:
        exchange.set_sandbox_mode(True)
    return exchange


def _decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


# ccxt unified order types; stop and take-profit use trigger params
_CCXT_ORDER_TYPE = {
    OrderType.MARKET: "market",
    OrderType.LIMIT: "limit",
    OrderType.STOP: "market",
    OrderType.TAKE_PROFIT: "market",
}


class CcxtOrderGateway:
    """Order gateway backed by a ccxt async exchange.

    Attributes:
        exchange: ccxt async exchange instance (owned by the caller)
        quote_currency: Currency the account balance is reported in
    """

    def __init__(self, exchange, quote_currency: str = "USDT"):
        self.exchange = exchange
        self.quote_currency = quote_currency

    # Timeouts and 5xx replies may follow an accepted order, so only
    # rejections the venue makes before accepting it are retried
    @with_retry(retryable_exceptions=(ccxt.OnMaintenance,))
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
        """Submit an order.

        Stop and take-profit orders are sent as market orders carrying
        ``stopLossPrice`` / ``takeProfitPrice`` trigger params.

        Raises:
            ValueError: On a limit order without price
            ccxt.BaseError: Whatever the exchange raises
        """
        side = OrderSide(side)
        order_type = OrderType(order_type)

        if order_type in (OrderType.LIMIT, OrderType.STOP, OrderType.TAKE_PROFIT) and price is None:
            raise ValueError(f"Price is required for {order_type.value} orders")

        order_params: Dict[str, Any] = dict(params or {})
        if reduce_only:
            order_params["reduceOnly"] = True
        if order_type == OrderType.STOP:
            order_params["stopLossPrice"] = float(price)
        elif order_type == OrderType.TAKE_PROFIT:
            order_params["takeProfitPrice"] = float(price)

        try:
            result = await self.exchange.create_order(
                symbol=symbol,
                type=_CCXT_ORDER_TYPE[order_type],
                side=side.value,
                amount=float(amount),
                price=float(price) if price is not None and order_type == OrderType.LIMIT else None,
                params=order_params,
            )
        except ccxt.InsufficientFunds as e:
            logger.error(
                "ccxt_gateway.insufficient_funds",
                symbol=symbol,
                amount=str(amount),
                error=str(e),
            )
            raise
        except Exception as e:
            logger.error(
                "ccxt_gateway.order_error",
                symbol=symbol,
                side=side.value,
                order_type=order_type.value,
                error=str(e),
            )
            raise

        ack = OrderAck(
            order_id=str(result.get('id')),
            symbol=symbol,
            side=side,
            order_type=order_type,
            amount=amount,
            price=price,
            reduce_only=reduce_only,
            status=result.get('status') or "open",
            raw=result,
        )
        logger.info(
            "ccxt_gateway.order_created",
            order_id=ack.order_id,
            symbol=symbol,
            side=side.value,
            order_type=order_type.value,
            amount=str(amount),
            status=ack.status,
        )
        return ack

    @with_retry()
    async def fetch_position(self, symbol: str) -> Optional[Position]:
        """Open position for ``symbol``, or None when flat."""
        try:
            raw_positions = await self.exchange.fetch_positions([symbol])
        except Exception as e:
            logger.error("ccxt_gateway.positions_error", symbol=symbol, error=str(e))
            raise

        for raw in raw_positions:
            position = self._to_position(raw, symbol)
            if position is not None and position.symbol == symbol:
                return position
        return None

    @with_retry()
    async def fetch_account_state(self) -> AccountState:
        """Quote-currency balance plus every open position."""
        try:
            balance = await self.exchange.fetch_balance()
            raw_positions = []
            if self.exchange.has.get('fetchPositions'):
                raw_positions = await self.exchange.fetch_positions()
        except Exception as e:
            logger.error("ccxt_gateway.account_error", error=str(e))
            raise

        total = balance.get('total', {}).get(self.quote_currency)
        positions = tuple(
            p for p in (self._to_position(raw) for raw in raw_positions) if p is not None
        )
        state = AccountState(balance_usdt=_decimal(total), positions=positions)
        logger.debug(
            "ccxt_gateway.account_fetched",
            balance=str(state.balance_usdt),
            positions=len(positions),
        )
        return state

    @staticmethod
    def _to_position(raw: Dict[str, Any], default_symbol: str = "") -> Optional[Position]:
        contracts = _decimal(raw.get('contracts'))
        if contracts == 0:
            return None

        side = (raw.get('side') or "").lower()
        if side == "long":
            position_side = PositionSide.LONG
        elif side == "short":
            position_side = PositionSide.SHORT
        else:
            position_side = PositionSide.LONG if contracts > 0 else PositionSide.SHORT

        leverage = _decimal(raw.get('leverage'))
        return Position(
            symbol=raw.get('symbol') or default_symbol,
            side=position_side,
            contracts=abs(contracts),
            entry_price=abs(_decimal(raw.get('entryPrice'))),
            unrealized_pnl=_decimal(raw.get('unrealizedPnl')),
            leverage=leverage if leverage > 0 else Decimal("1"),
        )

    async def close(self) -> None:
        """Close the underlying exchange connection."""
        await self.exchange.close()
        logger.info("ccxt_gateway.closed")
