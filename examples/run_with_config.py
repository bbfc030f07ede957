from pathlib import Path

from perp_backtest.config import freeze_config, load_config, verify_config_lock
from perp_backtest.monitoring import AuditLog
from perp_backtest.risk import build_policy
from perp_backtest.runtime import create_run_context
from perp_backtest.simulator.engine import BacktestEngine
from perp_backtest.strategy import build_strategy


config_path = Path("configs") / "perp_btc.yaml"
config = load_config(config_path)
lock_path = freeze_config(config_path)
assert verify_config_lock(config_path, lock_path)

context = create_run_context(config_path, config)

audit = AuditLog(
    Path(config.output.audit_log_path or "runtime/audit.log"),
    run_id=context.run_id,
    config_hash=context.config_hash,
)
audit.log("run_start", {"config": str(config_path), "lock": str(lock_path)})

strategy = build_strategy(config.strategy.name, config.strategy.parameters, config.strategy.model_path)
policy = build_policy(config.risk, config.simulation.initial_capital, audit_log=audit)
engine = BacktestEngine(config.simulation, strategy, policy, audit_log=audit)

print("Run ready:", context.run_id, "warmup bars:", engine.warmup_bars())
