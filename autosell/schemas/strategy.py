"""Pydantic schemas for strategy configuration (TOML ``[strategy]`` section)."""

import tomllib
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

from autosell.utils.constants import COMMITMENT_LEVELS


@dataclass(frozen=True)
class MomentumConfig:
    """Momentum tracker thresholds, in milliseconds. No defaults at this layer."""

    lull_threshold_ms: float
    window_ms: float
    buy_sell_ratio_threshold: float


class EntryConfig(BaseModel):
    buy_amount: float = Field(gt=0)
    max_slippage_bps: int = Field(default=300, ge=0, le=10000)
    priority_fee: int = Field(default=10000, ge=0)


class TargetsConfig(BaseModel):
    breakeven_market_cap: float = Field(gt=0)


class BreakevenSellConfig(BaseModel):
    enabled: bool = True
    sell_percentage: float = Field(default=50.0, gt=0, lt=100)


class MomentumSettings(BaseModel):
    lull_threshold_seconds: float = Field(gt=0)
    monitor_window_seconds: float = Field(gt=0)
    buy_sell_ratio_threshold: float = Field(ge=0, le=1)


class MonitoringConfig(BaseModel):
    check_interval_ms: int = Field(default=1000, ge=50)
    stream_commitment: str = "processed"

    @field_validator("stream_commitment")
    @classmethod
    def _validate_commitment(cls, value: str) -> str:
        if value not in COMMITMENT_LEVELS:
            allowed = ", ".join(COMMITMENT_LEVELS)
            raise ValueError(f"must be one of: {allowed}")
        return value


class ExitConfig(BaseModel):
    time_based_exit_seconds: float = Field(gt=0)
    dump_slippage_bps: int = Field(default=1000, ge=0, le=10000)
    dump_priority_fee: int = Field(default=10000, ge=0)


class RiskConfig(BaseModel):
    max_position_size: float = Field(gt=0)
    max_concurrent_positions: int = Field(default=1, ge=1)


class StrategyConfig(BaseModel):
    name: str = Field(default="default", min_length=1, max_length=120)
    enabled: bool = True
    entry: EntryConfig
    targets: TargetsConfig
    breakeven_sell: BreakevenSellConfig = BreakevenSellConfig()
    momentum: MomentumSettings
    monitoring: MonitoringConfig = MonitoringConfig()
    exit: ExitConfig
    risk: RiskConfig

    @model_validator(mode="after")
    def _validate_relationships(self):
        if self.entry.buy_amount > self.risk.max_position_size:
            raise ValueError("entry.buy_amount must not exceed risk.max_position_size")
        return self

    def momentum_config(self) -> MomentumConfig:
        return MomentumConfig(
            lull_threshold_ms=self.momentum.lull_threshold_seconds * 1000,
            window_ms=self.momentum.monitor_window_seconds * 1000,
            buy_sell_ratio_threshold=self.momentum.buy_sell_ratio_threshold,
        )


def parse_strategy_config(raw: dict) -> StrategyConfig:
    if "strategy" not in raw:
        raise ValueError("Missing [strategy] section in config")
    return StrategyConfig.model_validate(raw["strategy"])


def load_strategy_config(path: str | Path) -> StrategyConfig:
    """Load and validate a strategy TOML file."""
    with open(path, "rb") as fh:
        raw = tomllib.load(fh)
    return parse_strategy_config(raw)
