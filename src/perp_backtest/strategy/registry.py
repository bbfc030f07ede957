"""Strategy lookup by configured name."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from perp_backtest.strategy.base import TradingStrategy
from perp_backtest.strategy.bb_rsi import build_bb_rsi_from_config
from perp_backtest.strategy.tuned import apply_tuned_parameters, load_tuned_parameters

STRATEGY_BUILDERS: dict[str, Callable[[dict], TradingStrategy]] = {
    "bb_rsi": build_bb_rsi_from_config,
}


def build_strategy(
    name: str,
    parameters: Optional[dict] = None,
    model_path: Optional[str | Path] = None,
) -> TradingStrategy:
    builder = STRATEGY_BUILDERS.get(name)
    if builder is None:
        raise ValueError(f"Unknown strategy: {name}")
    strategy = builder(dict(parameters or {}))
    return apply_tuned_parameters(strategy, load_tuned_parameters(model_path))
