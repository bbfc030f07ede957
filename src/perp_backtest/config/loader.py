"""Load, override and freeze backtest configuration files."""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, fields, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import yaml

from perp_backtest.config.models import BacktestConfig, OutputConfig, StrategyConfig
from perp_backtest.risk.models import RiskConfig, RiskMode
from perp_backtest.simulator.engine import SimulationConfig


class ConfigError(ValueError):
    """Configuration is missing or invalid; the run cannot start."""


def load_config(path: str | Path) -> BacktestConfig:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    data = _load_yaml(path)

    data_path = data.get("data_path")
    return BacktestConfig(
        name=str(_require(data, "name")),
        version=str(_require(data, "version")),
        market=str(_require(data, "market")),
        timeframe=str(_require(data, "timeframe")),
        strategy=_parse_strategy(_require(data, "strategy")),
        data_dir=str(data.get("data_dir", "data")),
        data_path=str(data_path) if data_path is not None else None,
        simulation=_parse_simulation(data.get("simulation") or {}),
        risk=_parse_risk(data.get("risk") or {}),
        output=_parse_output(data.get("output") or {}),
    )


def compute_config_hash(path: str | Path) -> str:
    content = Path(path).read_bytes()
    return hashlib.sha256(content).hexdigest()


def _lock_path_for(path: Path, lock_path: Optional[str | Path]) -> Path:
    if lock_path is None:
        return path.with_suffix(path.suffix + ".lock.json")
    return Path(lock_path)


def freeze_config(path: str | Path, lock_path: Optional[str | Path] = None) -> Path:
    path = Path(path)
    lock_path = _lock_path_for(path, lock_path)
    payload = {
        "config_path": str(path),
        "config_hash": compute_config_hash(path),
        "frozen_at_utc": datetime.now(timezone.utc).isoformat(),
    }
    lock_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return lock_path


def verify_config_lock(path: str | Path, lock_path: Optional[str | Path] = None) -> bool:
    path = Path(path)
    lock_path = _lock_path_for(path, lock_path)
    if not lock_path.exists():
        return False
    payload = json.loads(lock_path.read_text(encoding="utf-8"))
    return payload.get("config_hash") == compute_config_hash(path)


def apply_overrides(config: BacktestConfig, overrides: dict[str, Any]) -> BacktestConfig:
    """Return a copy of ``config`` with command-line values applied.

    Keys name a top-level field (``market``, ``timeframe``, ``data_path``) or a
    field of the ``simulation`` or ``risk`` sections. ``None`` values are skipped.
    """
    top: dict[str, Any] = {}
    simulation: dict[str, Any] = {}
    risk: dict[str, Any] = {}
    simulation_fields = {item.name for item in fields(SimulationConfig)}
    risk_fields = {item.name for item in fields(RiskConfig)}

    for key, value in overrides.items():
        if value is None:
            continue
        if key in ("market", "timeframe", "data_path", "data_dir"):
            top[key] = str(value)
        elif key in simulation_fields:
            simulation[key] = value
        elif key in risk_fields:
            risk[key] = value
        else:
            raise ConfigError(f"Unknown override: {key}")

    if simulation:
        top["simulation"] = replace(config.simulation, **simulation)
    if risk:
        top["risk"] = replace(config.risk, **risk)
    return replace(config, **top) if top else config


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Config must be a mapping")
    return data


def _require(data: dict[str, Any], key: str) -> Any:
    if key not in data:
        raise ConfigError(f"Missing required config key: {key}")
    return data[key]


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


def _parse_strategy(data: Any) -> StrategyConfig:
    if isinstance(data, str):
        return StrategyConfig(name=data)
    if not isinstance(data, dict):
        raise ConfigError("strategy must be a name or a mapping")
    model_path = data.get("model_path")
    return StrategyConfig(
        name=str(_require(data, "name")),
        parameters=dict(data.get("parameters") or {}),
        model_path=str(model_path) if model_path is not None else None,
    )


def _parse_simulation(data: dict[str, Any]) -> SimulationConfig:
    defaults = SimulationConfig()
    try:
        config = SimulationConfig(
            initial_capital=float(data.get("initial_capital", defaults.initial_capital)),
            leverage=float(data.get("leverage", defaults.leverage)),
            fee_rate=float(data.get("fee_rate", defaults.fee_rate)),
            maintenance_margin_ratio=float(
                data.get("maintenance_margin_ratio", defaults.maintenance_margin_ratio)
            ),
            profit_target=_optional_float(data.get("profit_target")),
            warmup_bars=_optional_int(data.get("warmup_bars")),
            atr_period=int(data.get("atr_period", defaults.atr_period)),
            snapshot_interval=int(data.get("snapshot_interval", defaults.snapshot_interval)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid simulation config: {exc}") from exc
    if config.initial_capital <= 0:
        raise ConfigError("simulation.initial_capital must be positive")
    if config.leverage <= 0:
        raise ConfigError("simulation.leverage must be positive")
    if config.fee_rate < 0:
        raise ConfigError("simulation.fee_rate must not be negative")
    return config


def _parse_risk(data: dict[str, Any]) -> RiskConfig:
    defaults = RiskConfig()
    try:
        mode = RiskMode(data.get("mode", defaults.mode.value))
    except ValueError as exc:
        raise ConfigError(f"Invalid risk mode: {data.get('mode')}") from exc

    try:
        config = RiskConfig(
            mode=mode,
            max_risk_per_trade=float(data.get("max_risk_per_trade", defaults.max_risk_per_trade)),
            max_position_size=float(data.get("max_position_size", defaults.max_position_size)),
            max_open_positions=int(data.get("max_open_positions", defaults.max_open_positions)),
            max_drawdown=float(data.get("max_drawdown", defaults.max_drawdown)),
            use_volatility_adjustment=bool(
                data.get("use_volatility_adjustment", defaults.use_volatility_adjustment)
            ),
            volatility_window=int(data.get("volatility_window", defaults.volatility_window)),
            pyramiding=bool(data.get("pyramiding", defaults.pyramiding)),
            pyramiding_levels=int(data.get("pyramiding_levels", defaults.pyramiding_levels)),
            use_anti_martingale=bool(data.get("use_anti_martingale", defaults.use_anti_martingale)),
            win_multiplier=float(data.get("win_multiplier", defaults.win_multiplier)),
            loss_multiplier=float(data.get("loss_multiplier", defaults.loss_multiplier)),
            use_kelly_criterion=bool(data.get("use_kelly_criterion", defaults.use_kelly_criterion)),
            kelly_fraction=float(data.get("kelly_fraction", defaults.kelly_fraction)),
            position_fraction=float(data.get("position_fraction", defaults.position_fraction)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid risk config: {exc}") from exc
    if not 0 < config.max_drawdown <= 1:
        raise ConfigError("risk.max_drawdown must be in (0, 1]")
    for name in ("max_risk_per_trade", "max_position_size", "position_fraction"):
        if not 0 < getattr(config, name) < 1:
            raise ConfigError(f"risk.{name} must be in (0, 1)")
    if config.volatility_window < 2:
        raise ConfigError("risk.volatility_window must be at least 2")
    return config


def _parse_output(data: dict[str, Any]) -> OutputConfig:
    audit_log_path = data.get("audit_log_path")
    return OutputConfig(
        directory=str(data.get("directory", "results")),
        audit_log_path=str(audit_log_path) if audit_log_path is not None else None,
    )


def serialize_config(config: BacktestConfig) -> dict[str, Any]:
    payload = asdict(config)
    payload["risk"]["mode"] = config.risk.mode.value
    return payload
