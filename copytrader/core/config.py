"""Core configuration management module."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

CONFIG_PATH_ENV = "COPYTRADER_CONFIG"
DB_PATH_ENV = "COPYTRADER_DB_PATH"


class SystemConfig(BaseModel):
    """System-level configuration."""

    model_config = ConfigDict(use_enum_values=True)

    name: str = "CopyTrader"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_dir: str | None = "logs"


class DataConfig(BaseModel):
    """Persistence and audit log configuration."""

    model_config = ConfigDict(use_enum_values=True)

    store_type: Literal["memory", "sqlite"] = "memory"
    sqlite_path: str = "data/copytrader.db"
    audit_log_path: str | None = "data/decisions.jsonl"
    close_log_path: str | None = "data/closes.jsonl"
    history_size: int = 200

    @field_validator("history_size")
    @classmethod
    def validate_history_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("history_size must be positive")
        return v


class RiskConfig(BaseModel):
    """Risk management configuration.

    Fractions are relative to the strategy bucket total except
    ``daily_loss_limit_pct``, which is relative to the capital allocated
    across all buckets.
    """

    model_config = ConfigDict(use_enum_values=True)

    max_position_fraction: float = 0.12
    daily_loss_limit_pct: float = 0.03
    correlation_limit: float = 0.25
    emergency_stop: bool = False

    @field_validator("max_position_fraction", "daily_loss_limit_pct", "correlation_limit")
    @classmethod
    def validate_fractions(cls, v: float) -> float:
        """Validate that fractions are in (0, 1]."""
        if not 0 < v <= 1:
            raise ValueError("Fraction values must be in (0, 1]")
        return v


class MatcherConfig(BaseModel):
    """Strategy matcher configuration."""

    model_config = ConfigDict(use_enum_values=True)

    no_history_confidence: float = 0.25

    @field_validator("no_history_confidence")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("no_history_confidence must be between 0 and 1")
        return v


class MonitorConfig(BaseModel):
    """Per-item pacing and price lookup settings for cycle jobs."""

    model_config = ConfigDict(use_enum_values=True)

    price_timeout_seconds: float = 10.0
    failure_warning_threshold: int = 5
    item_pacing_seconds: float = 0.0

    @field_validator("price_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("price_timeout_seconds must be positive")
        return v

    @field_validator("failure_warning_threshold")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("failure_warning_threshold must be positive")
        return v

    @field_validator("item_pacing_seconds")
    @classmethod
    def validate_pacing(cls, v: float) -> float:
        if v < 0:
            raise ValueError("item_pacing_seconds must not be negative")
        return v


class SchedulerConfig(BaseModel):
    """Interval (seconds) per scheduled job type."""

    model_config = ConfigDict(use_enum_values=True)

    ingest_interval_seconds: float = 60.0
    monitor_interval_seconds: float = 120.0
    performance_interval_seconds: float = 900.0
    discovery_interval_seconds: float = 21_600.0
    enable_discovery: bool = True

    @field_validator(
        "ingest_interval_seconds",
        "monitor_interval_seconds",
        "performance_interval_seconds",
        "discovery_interval_seconds",
    )
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Job intervals must be positive")
        return v


class TakeProfitTier(BaseModel):
    """Sell ``sell_fraction`` of the original quantity once gain reaches ``at_gain``."""

    model_config = ConfigDict(use_enum_values=True)

    at_gain: float
    sell_fraction: float

    @field_validator("at_gain")
    @classmethod
    def validate_gain(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("at_gain must be positive")
        return v

    @field_validator("sell_fraction")
    @classmethod
    def validate_sell_fraction(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("sell_fraction must be in (0, 1]")
        return v


class StrategyConfig(BaseModel):
    """Applicability thresholds, sizing and exit rules for one strategy.

    Thresholds left as None are not checked.  Exit parameters left as
    None disable the corresponding exit rule.
    """

    model_config = ConfigDict(use_enum_values=True)

    enabled: bool = True
    priority: int = 0

    # Capital
    allocation: float = 1000.0
    max_per_trade: float = 100.0
    copy_fraction: float = 0.10
    max_concurrent: int = 10

    # Applicability
    direction: Literal["buy", "sell"] = "buy"
    chains: list[str] = []
    min_notional_usd: float | None = None
    min_win_rate: float | None = None
    max_token_age_hours: float | None = None
    min_liquidity_usd: float | None = None
    min_wallet_balance_usd: float | None = None
    min_volume_multiple: float | None = None

    # Exit rules
    stop_loss_pct: float | None = None
    take_profit_pct: float | None = None
    take_profit_tiers: list[TakeProfitTier] = []
    trailing_activation_pct: float | None = None
    trailing_pct: float | None = None
    max_hold_hours: float | None = None

    @field_validator("allocation", "max_per_trade")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("allocation and max_per_trade must be positive")
        return v

    @field_validator("max_concurrent")
    @classmethod
    def validate_max_concurrent(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_concurrent must be positive")
        return v

    @field_validator("copy_fraction")
    @classmethod
    def validate_copy_fraction(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("copy_fraction must be in (0, 1]")
        return v

    @field_validator("min_win_rate")
    @classmethod
    def validate_win_rate(cls, v: float | None) -> float | None:
        if v is not None and not 0 <= v < 1:
            raise ValueError("min_win_rate must be in [0, 1)")
        return v

    @field_validator("stop_loss_pct", "trailing_pct")
    @classmethod
    def validate_loss_pct(cls, v: float | None) -> float | None:
        if v is not None and not 0 < v < 1:
            raise ValueError("stop_loss_pct and trailing_pct must be in (0, 1)")
        return v

    @model_validator(mode="after")
    def validate_exit_rules(self) -> StrategyConfig:
        if (self.trailing_pct is None) != (self.trailing_activation_pct is None):
            raise ValueError(
                "trailing_pct and trailing_activation_pct must be set together"
            )
        if self.take_profit_tiers:
            if self.take_profit_pct is not None:
                raise ValueError("Use either take_profit_pct or take_profit_tiers, not both")
            total = sum(t.sell_fraction for t in self.take_profit_tiers)
            if total > 1.0 + 1e-9:
                raise ValueError("take_profit_tiers sell fractions exceed 100%")
            gains = [t.at_gain for t in self.take_profit_tiers]
            if gains != sorted(gains):
                raise ValueError("take_profit_tiers must be in ascending at_gain order")
        if self.max_per_trade > self.allocation:
            raise ValueError("max_per_trade cannot exceed allocation")
        return self


def default_strategies() -> dict[str, StrategyConfig]:
    """Built-in strategy parameters (balanced production profile)."""
    return {
        "copy_trade": StrategyConfig(
            priority=3, allocation=2500, max_per_trade=200, copy_fraction=0.08,
            max_concurrent=15, min_notional_usd=50, min_win_rate=0.50,
            stop_loss_pct=0.12, take_profit_pct=0.40,
            trailing_activation_pct=0.30, trailing_pct=0.12,
        ),
        "breakout": StrategyConfig(
            priority=2, allocation=2000, max_per_trade=150, max_concurrent=10,
            min_volume_multiple=2.5, max_hold_hours=48,
        ),
        "smart_money": StrategyConfig(
            priority=4, allocation=2000, max_per_trade=250, max_concurrent=8,
            min_notional_usd=2000, min_wallet_balance_usd=75_000,
            stop_loss_pct=0.10, take_profit_pct=0.35,
            trailing_activation_pct=0.15, trailing_pct=0.10,
        ),
        "arbitrage": StrategyConfig(
            priority=5, allocation=1500, max_per_trade=200, max_concurrent=8,
            min_notional_usd=250, min_win_rate=0.50,
            stop_loss_pct=0.08, take_profit_pct=0.20,
            trailing_activation_pct=0.15, trailing_pct=0.08,
        ),
        "memecoin": StrategyConfig(
            priority=1, allocation=1000, max_per_trade=100, max_concurrent=12,
            chains=["solana", "base"], min_win_rate=0.35,
            stop_loss_pct=0.40,
            take_profit_tiers=[
                TakeProfitTier(at_gain=1.0, sell_fraction=0.6),
                TakeProfitTier(at_gain=4.0, sell_fraction=0.3),
                TakeProfitTier(at_gain=9.0, sell_fraction=0.1),
            ],
            max_hold_hours=48,
        ),
        "early_gem": StrategyConfig(
            priority=0, allocation=500, max_per_trade=75, max_concurrent=6,
            min_win_rate=0.50, max_token_age_hours=120, min_liquidity_usd=20_000,
            stop_loss_pct=0.25, take_profit_pct=1.5, max_hold_hours=48,
        ),
    }


class Settings(BaseModel):
    """Root settings configuration."""

    model_config = ConfigDict(use_enum_values=True)

    system: SystemConfig = SystemConfig()
    data: DataConfig = DataConfig()
    risk: RiskConfig = RiskConfig()
    matcher: MatcherConfig = MatcherConfig()
    monitor: MonitorConfig = MonitorConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    strategies: dict[str, StrategyConfig] = {}

    @model_validator(mode="after")
    def fill_default_strategies(self) -> Settings:
        if not self.strategies:
            self.strategies = default_strategies()
        return self

    @property
    def enabled_strategies(self) -> dict[str, StrategyConfig]:
        return {name: cfg for name, cfg in self.strategies.items() if cfg.enabled}


def load_settings(path: Path | str) -> Settings:
    """Load settings from a YAML configuration file.

    ``COPYTRADER_DB_PATH`` in the environment overrides ``data.sqlite_path``.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Settings instance with loaded configuration.

    Raises:
        FileNotFoundError: If configuration file does not exist.
        yaml.YAMLError: If YAML is invalid.
        ValueError: If configuration is invalid.
    """
    config_path = Path(path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raw_config = {}

    db_path = os.environ.get(DB_PATH_ENV)
    if db_path:
        raw_config.setdefault("data", {})["sqlite_path"] = db_path

    return Settings.model_validate(raw_config)
