"""Strategy interface, indicators and the reference strategy."""

from perp_backtest.strategy.base import TradingStrategy
from perp_backtest.strategy.bb_rsi import BollingerRsiParams, BollingerRsiStrategy, build_bb_rsi_from_config
from perp_backtest.strategy.indicators import IndicatorSeries, average_true_range
from perp_backtest.strategy.registry import STRATEGY_BUILDERS, build_strategy
from perp_backtest.strategy.tuned import apply_tuned_parameters, load_tuned_parameters

__all__ = [
    "BollingerRsiParams",
    "BollingerRsiStrategy",
    "IndicatorSeries",
    "STRATEGY_BUILDERS",
    "TradingStrategy",
    "apply_tuned_parameters",
    "average_true_range",
    "build_bb_rsi_from_config",
    "build_strategy",
    "load_tuned_parameters",
]
