"""Configuration models for reproducible backtest runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from perp_backtest.risk.models import RiskConfig
from perp_backtest.simulator.engine import SimulationConfig


@dataclass(frozen=True)
class StrategyConfig:
    name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    model_path: Optional[str] = None


@dataclass(frozen=True)
class OutputConfig:
    directory: str = "results"
    audit_log_path: Optional[str] = None


@dataclass(frozen=True)
class BacktestConfig:
    name: str
    version: str
    market: str
    timeframe: str
    strategy: StrategyConfig
    data_dir: str = "data"
    data_path: Optional[str] = None
    simulation: SimulationConfig = SimulationConfig()
    risk: RiskConfig = RiskConfig()
    output: OutputConfig = OutputConfig()
