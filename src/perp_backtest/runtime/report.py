"""Persist a simulation result as JSON files for external reporting."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from perp_backtest.runtime.context import RunContext
from perp_backtest.simulator.models import SimulationResult

logger = logging.getLogger(__name__)

TRADES_FILE = "backtest_trades.json"
EQUITY_FILE = "equity_curve.json"
STATISTICS_FILE = "trade_statistics.json"
RISK_FILE = "risk_statistics.json"
POSITION_SIZES_FILE = "position_sizes.json"
ADJUSTMENTS_FILE = "risk_adjustments.json"
RUN_FILE = "run.json"


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def _records(items) -> list[dict[str, Any]]:
    return [_plain(asdict(item)) for item in items]


def serialize_result(result: SimulationResult) -> dict[str, Any]:
    """Plain-data view of a result, keyed by output file name."""
    statistics = _plain(asdict(result.metrics))
    statistics["initial_capital"] = result.initial_capital
    statistics["open_positions"] = _records(result.open_positions)
    return {
        TRADES_FILE: _records(result.trades),
        EQUITY_FILE: _records(result.equity_curve),
        STATISTICS_FILE: statistics,
        RISK_FILE: _records(result.risk_snapshots),
        POSITION_SIZES_FILE: _records(result.position_sizes),
        ADJUSTMENTS_FILE: _records(result.adjustments),
    }


def write_results(
    result: SimulationResult,
    output_dir: str | Path,
    run_context: Optional[RunContext] = None,
    config: Optional[dict[str, Any]] = None,
) -> list[Path]:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    written: list[Path] = []
    for name, payload in serialize_result(result).items():
        path = output_dir / name
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        written.append(path)

    if run_context is not None or config is not None:
        run_payload: dict[str, Any] = {}
        if run_context is not None:
            run_payload.update(_plain(asdict(run_context)))
        if config is not None:
            run_payload["config"] = _plain(config)
        path = output_dir / RUN_FILE
        path.write_text(json.dumps(run_payload, indent=2), encoding="utf-8")
        written.append(path)

    logger.info("Wrote %d result files to %s", len(written), output_dir)
    return written
