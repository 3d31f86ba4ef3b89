"""Configuration management for the tradeloop pipeline."""

from decimal import Decimal
from typing import Any, List, Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tradeloop.core.timeframes import parse_timeframe

# =============================================================================
# Risk Configuration
# =============================================================================

# camelCase keys accepted from strategy profiles and JSON config files
_RISK_KEY_ALIASES = {
    "maxLeverage": "max_leverage",
    "riskPerTradePercent": "risk_per_trade_pct",
    "maxPositions": "max_positions",
    "slPct": "sl_pct",
    "tpPct": "tp_pct",
    "minPositionSize": "min_position_size",
    "maxPositionSize": "max_position_size",
    "trailingActivationPct": "trailing_activation_pct",
    "trailingTrailPct": "trailing_trail_pct",
}


class RiskConfig(BaseSettings):
    """Position sizing and bracket configuration.

    Percent conventions differ per field and follow how traders write them:
    ``risk_per_trade_pct`` and the trailing settings are fractions
    (0.01 = 1%), ``sl_pct`` and ``tp_pct`` are percents (1 = 1%).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RISK_",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Maximum notional exposure as a multiple of equity
    max_leverage: Decimal = Field(default=Decimal("5"))

    # Fraction of equity put at risk per trade (0.01 = 1%)
    risk_per_trade_pct: Decimal = Field(default=Decimal("0.01"))

    # Maximum concurrent open positions across symbols
    max_positions: int = Field(default=1, ge=1)

    # Stop loss / take profit distance from entry, in percent
    sl_pct: Decimal = Field(default=Decimal("1"))
    tp_pct: Decimal = Field(default=Decimal("2"))

    # Position size bounds (base asset units)
    min_position_size: Decimal = Field(default=Decimal("0.001"))
    max_position_size: Decimal = Field(default=Decimal("10"))

    # Trailing stop: activation move and trail distance, as fractions
    trailing_activation_pct: Decimal = Field(default=Decimal("0.01"))
    trailing_trail_pct: Decimal = Field(default=Decimal("0.005"))

    @model_validator(mode="before")
    @classmethod
    def accept_camel_case(cls, data: Any) -> Any:
        """Map camelCase keys onto field names."""
        if not isinstance(data, dict):
            return data
        normalized = dict(data)
        for alias, name in _RISK_KEY_ALIASES.items():
            if alias in normalized:
                normalized.setdefault(name, normalized.pop(alias))
        return normalized

    @field_validator("max_leverage", "risk_per_trade_pct", "sl_pct", "tp_pct")
    @classmethod
    def validate_positive(cls, v):
        """Validate percentages and leverage are positive."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("risk_per_trade_pct")
    @classmethod
    def validate_risk_fraction(cls, v):
        """Validate risk per trade is a fraction of equity."""
        if v > 1:
            raise ValueError("risk_per_trade_pct is a fraction (0.01 = 1%) and must be <= 1")
        return v

    @field_validator("min_position_size", "trailing_activation_pct", "trailing_trail_pct")
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("Value must not be negative")
        return v

    @model_validator(mode="after")
    def validate_size_bounds(self) -> "RiskConfig":
        """Validate min_position_size <= max_position_size."""
        if self.max_position_size <= 0:
            raise ValueError("max_position_size must be positive")
        if self.min_position_size > self.max_position_size:
            raise ValueError("min_position_size must be <= max_position_size")
        return self


# =============================================================================
# Runtime Configuration
# =============================================================================


class RuntimeConfig(BaseSettings):
    """Pipeline runtime settings: what to trade and where."""

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="TRADELOOP_", case_sensitive=False, extra="ignore"
    )

    # Mode: 'paper' for simulated fills, 'live' for exchange orders
    trading_mode: Literal["paper", "live"] = Field(default="paper")

    symbol: str = Field(default="BTC/USDT")
    signal_venue: str = Field(default="binance")
    exchange_id: str = Field(default="binance")

    # Timeframe the strategy acts on
    execution_timeframe: str = Field(default="1m")

    # Tracked timeframes (stored as string, accessed as list via property)
    timeframes_str: str = Field(default="1m,5m,15m,1h")

    cache_limit: int = Field(default=300, ge=1)
    max_cache_age_ms: Optional[int] = Field(default=None, ge=0)
    starting_balance: Decimal = Field(default=Decimal("10000"), gt=0)

    @property
    def timeframes(self) -> List[str]:
        """Parse tracked timeframes, always including the execution timeframe."""
        parsed = [s.strip() for s in self.timeframes_str.split(",") if s.strip()]
        if self.execution_timeframe not in parsed:
            parsed.insert(0, self.execution_timeframe)
        return parsed

    @field_validator("execution_timeframe")
    @classmethod
    def validate_execution_timeframe(cls, v):
        parse_timeframe(v)
        return v

    @field_validator("timeframes_str")
    @classmethod
    def validate_timeframes(cls, v):
        for tf in v.split(","):
            if tf.strip():
                parse_timeframe(tf.strip())
        return v


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )

    # Log level
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO"
    )

    # Optional log file; stdout only when unset
    log_file: Optional[str] = Field(default=None)


__all__ = [
    "RiskConfig",
    "RuntimeConfig",
    "LoggingConfig",
]
