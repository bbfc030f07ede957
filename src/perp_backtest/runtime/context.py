"""Identity of one backtest run: config fingerprint, market and start time."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from perp_backtest.config.loader import compute_config_hash
from perp_backtest.config.models import BacktestConfig


@dataclass(frozen=True)
class RunContext:
    run_id: str
    config_path: Path
    config_hash: str
    started_at: datetime
    market: Optional[str] = None
    timeframe: Optional[str] = None


def create_run_context(
    config_path: str | Path,
    config: Optional[BacktestConfig] = None,
    run_id: Optional[str] = None,
) -> RunContext:
    """Fingerprint ``config_path`` and derive a run id.

    The id reads ``<name>-<market>-<timeframe>-<UTC stamp>-<hash prefix>``;
    without a loaded config the file stem stands in for the name.
    """
    path = Path(config_path)
    config_hash = compute_config_hash(path)
    started_at = datetime.now(timezone.utc)
    market = config.market if config is not None else None
    timeframe = config.timeframe if config is not None else None
    if run_id is None:
        parts = [config.name if config is not None else path.stem]
        parts.extend(item for item in (market, timeframe) if item)
        parts.append(f"{started_at:%Y%m%dT%H%M%SZ}")
        parts.append(config_hash[:8])
        run_id = "-".join(parts)
    return RunContext(
        run_id=run_id,
        config_path=path,
        config_hash=config_hash,
        started_at=started_at,
        market=market,
        timeframe=timeframe,
    )
