"""Overlay externally tuned parameters onto a strategy."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import fields, is_dataclass, replace
from pathlib import Path
from typing import Any, Optional

from perp_backtest.strategy.base import TradingStrategy

logger = logging.getLogger(__name__)

# Names emitted by the optimiser that do not map mechanically to snake_case.
ALIASES = {
    "bb_period": "bollinger_window",
    "bb_std_dev": "bollinger_stddev",
}


def _snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def load_tuned_parameters(path: Optional[str | Path]) -> dict[str, float]:
    if path is None:
        return {}
    path = Path(path)
    if not path.exists():
        logger.warning("No tuned parameters at %s, using defaults", path)
        return {}
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Tuned parameters must be a mapping: {path}")
    return {key: value for key, value in data.items() if _is_number(value)}


def apply_tuned_parameters(strategy: TradingStrategy, tuned: dict[str, Any]) -> TradingStrategy:
    """Overwrite matching numeric fields of ``strategy.params``.

    Unknown names and non-numeric values are ignored.
    """
    params = getattr(strategy, "params", None)
    if not tuned or params is None or not is_dataclass(params):
        return strategy

    known = {item.name: item for item in fields(params)}
    updates: dict[str, Any] = {}
    for raw_name, value in tuned.items():
        if not _is_number(value):
            continue
        name = _snake_case(raw_name)
        name = ALIASES.get(name, name)
        if name not in known:
            continue
        current = getattr(params, name)
        updates[name] = int(value) if isinstance(current, int) else float(value)

    if updates:
        strategy.params = replace(params, **updates)
        logger.info("Applied tuned parameters to %s: %s", strategy.strategy_id, updates)
    return strategy


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
