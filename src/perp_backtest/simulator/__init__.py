"""Simulation models, position arithmetic and metrics."""

from perp_backtest.simulator.market_data import MarketDataError, load_candles, parse_candles, resolve_data_path
from perp_backtest.simulator.metrics import compute_metrics, max_drawdown, sharpe_ratio
from perp_backtest.simulator.models import (
    AdjustmentRecord,
    BacktestMetrics,
    Candle,
    Direction,
    EquityPoint,
    ExitReason,
    Position,
    PositionSizeRecord,
    RiskSnapshot,
    SignalAction,
    SimulationResult,
    StrategySignal,
    Trade,
)
from perp_backtest.simulator.positions import compute_pnl, is_liquidated, liquidation_price

__all__ = [
    "AdjustmentRecord",
    "BacktestMetrics",
    "Candle",
    "Direction",
    "EquityPoint",
    "ExitReason",
    "MarketDataError",
    "Position",
    "PositionSizeRecord",
    "RiskSnapshot",
    "SignalAction",
    "SimulationResult",
    "StrategySignal",
    "Trade",
    "compute_metrics",
    "compute_pnl",
    "is_liquidated",
    "liquidation_price",
    "load_candles",
    "max_drawdown",
    "parse_candles",
    "resolve_data_path",
    "sharpe_ratio",
]
