"""In-memory paper trading account."""
from decimal import Decimal
from typing import Optional, Union

import structlog

from tradeloop.core.models import ClosedTrade, PaperAccountSnapshot, TradeCounters

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


class PaperAccount:
    """Running balance, equity high-water mark and trade tally for one session.

    The only mutations are ``register_closed_trade`` and ``snapshot``; history
    before the session is summarised by ``starting_balance``.
    """

    def __init__(self, starting_balance: Union[Decimal, int, float, str]):
        self.starting_balance = Decimal(str(starting_balance))
        self.balance = self.starting_balance
        self.equity = self.starting_balance
        self.max_equity = self.starting_balance
        self._total = 0
        self._wins = 0
        self._losses = 0
        self._breakeven = 0
        self.last_trade: Optional[ClosedTrade] = None

    def register_closed_trade(self, trade: ClosedTrade) -> PaperAccountSnapshot:
        """Book a closed trade and return the resulting snapshot (no unrealized PnL)."""
        self.balance += trade.realized_pnl
        self._total += 1

        if trade.realized_pnl > 0:
            self._wins += 1
        elif trade.realized_pnl < 0:
            self._losses += 1
        else:
            self._breakeven += 1

        self.last_trade = trade
        snapshot = self.snapshot(ZERO)

        logger.info(
            "paper_account.trade_closed",
            symbol=trade.symbol,
            side=trade.side.value,
            realized_pnl=str(trade.realized_pnl),
            balance=str(self.balance),
            trades=self._total,
        )
        return snapshot

    def snapshot(self, unrealized_pnl: Union[Decimal, int, float] = ZERO) -> PaperAccountSnapshot:
        """Recompute equity with ``unrealized_pnl`` and report the account state."""
        self.equity = self.balance + Decimal(str(unrealized_pnl))
        if self.equity > self.max_equity:
            self.max_equity = self.equity

        return PaperAccountSnapshot(
            starting_balance=self.starting_balance,
            balance=self.balance,
            equity=self.equity,
            total_realized_pnl=self.balance - self.starting_balance,
            max_equity=self.max_equity,
            max_drawdown=self.max_equity - self.equity,
            trades=TradeCounters(
                total=self._total,
                wins=self._wins,
                losses=self._losses,
                breakeven=self._breakeven,
            ),
            last_trade=self.last_trade,
        )
