"""Candle loading from JSON files."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from perp_backtest.simulator.models import Candle

FIELD_KEYS = {
    "timestamp": ("t", "timestamp", "time"),
    "open": ("o", "open"),
    "high": ("h", "high"),
    "low": ("l", "low"),
    "close": ("c", "close"),
}


class MarketDataError(ValueError):
    """Market data is missing or unusable; the run cannot start."""


def resolve_data_path(data_dir: str | Path, market: str, timeframe: str) -> Path:
    return Path(data_dir) / market / f"{market}-{timeframe}.json"


def load_candles(path: str | Path) -> list[Candle]:
    path = Path(path)
    if not path.exists():
        raise MarketDataError(f"No market data file at {path}")
    try:
        rows = json.loads(path.read_text(encoding="utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MarketDataError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(rows, list):
        raise MarketDataError(f"Market data in {path} must be a list of candles")
    candles = parse_candles(rows)
    if not candles:
        raise MarketDataError(f"No candles found in {path}")
    return candles


def parse_candles(rows: Iterable[dict[str, Any]]) -> list[Candle]:
    candles: list[Candle] = []
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            raise MarketDataError(f"Candle {index} is not a mapping")
        try:
            candle = Candle(
                timestamp=_parse_time(_field(row, "timestamp")),
                open=float(_field(row, "open")),
                high=float(_field(row, "high")),
                low=float(_field(row, "low")),
                close=float(_field(row, "close")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MarketDataError(f"Malformed candle {index}: {exc}") from exc
        if candles and candle.timestamp <= candles[-1].timestamp:
            raise MarketDataError(f"Candle {index} is not in ascending time order")
        candles.append(candle)
    return candles


def _field(row: dict[str, Any], name: str) -> Any:
    for key in FIELD_KEYS[name]:
        if key in row:
            return row[key]
    raise KeyError(f"missing {name}")


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    text = str(value)
    if text.isdigit():
        return datetime.fromtimestamp(int(text) / 1000.0, tz=timezone.utc)
    return _as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken as UTC so mixed inputs stay comparable.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
