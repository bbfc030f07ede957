"""Config loading and freezing."""

from perp_backtest.config.loader import (
    ConfigError,
    apply_overrides,
    compute_config_hash,
    freeze_config,
    load_config,
    serialize_config,
    verify_config_lock,
)
from perp_backtest.config.models import BacktestConfig, OutputConfig, StrategyConfig

__all__ = [
    "BacktestConfig",
    "ConfigError",
    "OutputConfig",
    "StrategyConfig",
    "apply_overrides",
    "compute_config_hash",
    "freeze_config",
    "load_config",
    "serialize_config",
    "verify_config_lock",
]
