"""Execution engine: submits a trade plan as an entry plus protective orders.

Order of operations is fixed: resync position, market entry, then the
reduce-only stop, then the reduce-only take-profit. Protective orders are
only sent once the entry has been acknowledged, and never for closing plans.
No retries happen here; gateway adapters own that.
"""
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

import structlog

from tradeloop.core.exceptions import PartialExecutionError
from tradeloop.core.models import (AccountState, ExecutionReport, OrderAck,
                                   OrderSide, OrderType, PlanAction, Position,
                                   TradePlan)

logger = structlog.get_logger(__name__)


class OrderGateway(Protocol):
    """Order placement and account queries against a venue (live or paper)."""

    async def create_order(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        amount: Decimal,
        price: Optional[Decimal] = None,
        reduce_only: bool = False,
        params: Optional[Dict[str, Any]] = None,
    ) -> OrderAck:
        ...

    async def fetch_position(self, symbol: str) -> Optional[Position]:
        ...

    async def fetch_account_state(self) -> AccountState:
        ...


class ExecutionEngine:
    """Executes TradePlans against an OrderGateway."""

    def __init__(self, gateway: OrderGateway):
        self.gateway = gateway

    async def execute(self, plan: TradePlan) -> ExecutionReport:
        """Submit ``plan`` and return the acknowledged order ids.

        Raises:
            Exception: Entry order failures propagate unchanged
            PartialExecutionError: A protective order failed after the entry
                was acknowledged; the gateway error is chained as __cause__
        """
        position = await self.gateway.fetch_position(plan.symbol)
        logger.debug(
            "execution_engine.position_synced",
            symbol=plan.symbol,
            side=position.side.value if position else None,
            contracts=str(position.contracts) if position else None,
        )

        entry = await self.gateway.create_order(
            symbol=plan.symbol,
            side=plan.side,
            order_type=OrderType.MARKET,
            amount=plan.amount,
            reduce_only=plan.reduce_only,
            params={
                "positionSide": plan.position_side.value,
                "leverage": float(plan.leverage),
            },
        )
        report = ExecutionReport(plan=plan, entry_order_id=entry.order_id)
        logger.info(
            "execution_engine.entry_submitted",
            symbol=plan.symbol,
            action=plan.action.value,
            side=plan.side.value,
            amount=str(plan.amount),
            order_id=entry.order_id,
        )

        if plan.reduce_only or plan.action != PlanAction.OPEN:
            return report

        if plan.stop_loss_price is not None:
            stop = await self._submit_protective(
                plan, report, OrderType.STOP, plan.stop_loss_price, "stop_loss"
            )
            report = report.model_copy(update={"stop_order_id": stop.order_id})

        if plan.take_profit_price is not None:
            take_profit = await self._submit_protective(
                plan, report, OrderType.TAKE_PROFIT, plan.take_profit_price, "take_profit"
            )
            report = report.model_copy(update={"take_profit_order_id": take_profit.order_id})

        logger.info(
            "execution_engine.bracket_complete",
            symbol=plan.symbol,
            entry_order_id=report.entry_order_id,
            stop_order_id=report.stop_order_id,
            take_profit_order_id=report.take_profit_order_id,
        )
        return report

    async def _submit_protective(
        self,
        plan: TradePlan,
        report: ExecutionReport,
        order_type: OrderType,
        price: Decimal,
        leg: str,
    ) -> OrderAck:
        try:
            return await self.gateway.create_order(
                symbol=plan.symbol,
                side=plan.exit_side,
                order_type=order_type,
                amount=plan.amount,
                price=price,
                reduce_only=True,
                params={
                    "stopPrice": float(price),
                    "positionSide": plan.position_side.value,
                },
            )
        except Exception as e:
            partial = report.model_copy(update={"error": f"{leg}: {e}"})
            logger.error(
                "execution_engine.partial_execution",
                symbol=plan.symbol,
                failed_leg=leg,
                entry_order_id=report.entry_order_id,
                error=str(e),
            )
            raise PartialExecutionError(partial, leg) from e
