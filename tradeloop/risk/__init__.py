"""Risk management for tradeloop.

Converts strategy intents into sized, bracketed trade plans:
- Risk-based position sizing clamped to configured bounds
- Leverage-capped notional
- Stop loss / take profit prices offset from the last price
"""

from tradeloop.risk.risk_manager import (
    EffectiveRisk,
    RiskManager,
    create_risk_manager,
)

__all__ = [
    'RiskManager',
    'EffectiveRisk',
    'create_risk_manager',
]
