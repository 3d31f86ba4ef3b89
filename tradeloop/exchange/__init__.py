"""Exchange integration for tradeloop."""

from tradeloop.exchange.ccxt_gateway import (
    CcxtOrderGateway,
    RetryConfig,
    create_exchange,
    with_retry,
)

__all__ = [
    "CcxtOrderGateway",
    "RetryConfig",
    "create_exchange",
    "with_retry",
]
