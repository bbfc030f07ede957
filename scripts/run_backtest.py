from __future__ import annotations

import argparse
import logging
from pathlib import Path

from perp_backtest.config import apply_overrides, load_config, serialize_config
from perp_backtest.monitoring import AuditLog
from perp_backtest.risk import build_policy
from perp_backtest.runtime import create_run_context, write_results
from perp_backtest.simulator import load_candles, resolve_data_path
from perp_backtest.simulator.engine import BacktestEngine
from perp_backtest.strategy import build_strategy

logger = logging.getLogger("run_backtest")


def _toggle(parser: argparse.ArgumentParser, name: str, help_text: str) -> None:
    parser.add_argument(f"--{name}", dest=name.replace("-", "_"), action="store_true", default=None, help=help_text)
    parser.add_argument(f"--no-{name}", dest=name.replace("-", "_"), action="store_false", default=None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a leveraged backtest from a YAML config.")
    parser.add_argument("--config", required=True)
    parser.add_argument("--data", help="Candle JSON file; defaults to <data_dir>/<market>/<market>-<timeframe>.json")
    parser.add_argument("--output", help="Directory for result files")
    parser.add_argument("--market")
    parser.add_argument("--timeframe")
    parser.add_argument("--leverage", type=float)
    parser.add_argument("--capital", dest="initial_capital", type=float)
    parser.add_argument("--max-risk", dest="max_risk_per_trade", type=float)
    parser.add_argument("--max-drawdown", type=float)
    _toggle(parser, "use-volatility-adjustment", "Scale risk by recent price volatility")
    _toggle(parser, "use-kelly-criterion", "Cap risk by the fractional Kelly stake")
    _toggle(parser, "use-anti-martingale", "Scale risk by the current win/loss streak")
    _toggle(parser, "pyramiding", "Allow same-direction positions to be added")
    parser.add_argument("--audit-log", help="Append audit records to this JSON-lines file")
    parser.add_argument("--verbose", action="store_true")
    return parser


def main() -> None:
    args = build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config_path = Path(args.config)
    config = load_config(config_path)
    config = apply_overrides(
        config,
        {
            "market": args.market,
            "timeframe": args.timeframe,
            "data_path": args.data,
            "leverage": args.leverage,
            "initial_capital": args.initial_capital,
            "max_risk_per_trade": args.max_risk_per_trade,
            "max_drawdown": args.max_drawdown,
            "use_volatility_adjustment": args.use_volatility_adjustment,
            "use_kelly_criterion": args.use_kelly_criterion,
            "use_anti_martingale": args.use_anti_martingale,
            "pyramiding": args.pyramiding,
        },
    )

    context = create_run_context(config_path, config)
    audit_path = args.audit_log or config.output.audit_log_path
    audit = None
    if audit_path:
        audit = AuditLog(audit_path, run_id=context.run_id, config_hash=context.config_hash)
        audit.log("run_start", {"config": str(config_path), "market": config.market, "timeframe": config.timeframe})

    data_path = config.data_path or resolve_data_path(config.data_dir, config.market, config.timeframe)
    candles = load_candles(data_path)
    logger.info("Loaded %d candles from %s", len(candles), data_path)

    strategy = build_strategy(config.strategy.name, config.strategy.parameters, config.strategy.model_path)
    policy = build_policy(config.risk, config.simulation.initial_capital, audit_log=audit)
    engine = BacktestEngine(config.simulation, strategy, policy, audit_log=audit)
    result = engine.run(candles)

    output_dir = Path(args.output or config.output.directory)
    write_results(result, output_dir, run_context=context, config=serialize_config(config))
    if audit is not None:
        audit.log("run_end", {"final_equity": result.final_equity, "trades": len(result.trades)})

    metrics = result.metrics
    print(f"Run {context.run_id}")
    print(f"Final equity: {result.final_equity:.2f} (net {metrics.net_profit:+.2f})")
    print(f"Trades: {metrics.total_trades}, win rate {metrics.win_rate * 100:.2f}%, liquidations {metrics.margin_calls}")
    print(f"Sharpe: {metrics.sharpe_ratio:.2f}, max drawdown {metrics.max_drawdown * 100:.2f}%")
    print(f"Results written to {output_dir}")


if __name__ == "__main__":
    main()
