"""Performance statistics derived from the trade ledger and equity curve."""

from __future__ import annotations

import math
from typing import Iterable, Sequence

from perp_backtest.simulator.models import (
    BacktestMetrics,
    Direction,
    EquityPoint,
    ExitReason,
    Trade,
)

TRADING_DAYS_PER_YEAR = 252


def sharpe_ratio(trades: Sequence[Trade], initial_capital: float) -> float:
    if not trades or initial_capital <= 0:
        return 0.0
    returns = [trade.pnl / initial_capital for trade in trades]
    mean = sum(returns) / len(returns)
    variance = sum((value - mean) ** 2 for value in returns) / len(returns)
    std = math.sqrt(variance)
    if std <= 0:
        return 0.0
    return mean / std * math.sqrt(TRADING_DAYS_PER_YEAR)


def max_drawdown(equity_curve: Iterable[EquityPoint], initial_capital: float) -> float:
    peak = initial_capital
    worst = 0.0
    for point in equity_curve:
        if point.equity > peak:
            peak = point.equity
        if peak <= 0:
            continue
        drawdown = (peak - point.equity) / peak
        if drawdown > worst:
            worst = drawdown
    return worst


def compute_metrics(
    trades: Sequence[Trade],
    equity_curve: Sequence[EquityPoint],
    initial_capital: float,
    final_equity: float,
) -> BacktestMetrics:
    total = len(trades)
    wins = [trade.pnl for trade in trades if trade.pnl > 0]
    losses = [trade.pnl for trade in trades if trade.pnl <= 0]

    trades_by_reason = {reason.value: 0 for reason in ExitReason}
    profit_by_reason = {reason.value: 0.0 for reason in ExitReason}
    for trade in trades:
        trades_by_reason[trade.exit_reason.value] += 1
        profit_by_reason[trade.exit_reason.value] += trade.pnl

    net_profit = sum(trade.pnl for trade in trades)
    return BacktestMetrics(
        total_trades=total,
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=len(wins) / total if total else 0.0,
        profit_factor=len(wins) / len(losses) if losses else 0.0,
        net_profit=net_profit,
        final_equity=final_equity,
        sharpe_ratio=sharpe_ratio(trades, initial_capital),
        max_drawdown=max_drawdown(equity_curve, initial_capital),
        average_profit_per_trade=net_profit / total if total else 0.0,
        average_win=sum(wins) / len(wins) if wins else 0.0,
        average_loss=sum(losses) / len(losses) if losses else 0.0,
        largest_win=max(wins, default=0.0),
        largest_loss=min(losses, default=0.0),
        long_trades=sum(1 for trade in trades if trade.direction == Direction.LONG),
        short_trades=sum(1 for trade in trades if trade.direction == Direction.SHORT),
        margin_calls=trades_by_reason[ExitReason.LIQUIDATION.value],
        trades_by_exit_reason=trades_by_reason,
        profit_by_exit_reason=profit_by_reason,
    )
