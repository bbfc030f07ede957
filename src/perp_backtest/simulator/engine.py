"""Bar-by-bar leveraged backtest engine."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from perp_backtest.risk.manager import RiskManager
from perp_backtest.risk.models import RecommendationAction, RiskConfig, TradeCandidate
from perp_backtest.risk.policy import RiskPolicy
from perp_backtest.simulator.market_data import MarketDataError
from perp_backtest.simulator.metrics import compute_metrics
from perp_backtest.simulator.models import (
    AdjustmentRecord,
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
from perp_backtest.simulator.positions import (
    DEFAULT_MAINTENANCE_MARGIN_RATIO,
    adverse_price,
    compute_pnl,
    is_liquidated,
    liquidation_loss,
    liquidation_price,
    profit_target_price,
    stop_touched,
    target_touched,
)
from perp_backtest.strategy.base import TradingStrategy
from perp_backtest.strategy.indicators import average_true_range

logger = logging.getLogger(__name__)

MIN_WARMUP_BARS = 50
WARMUP_PADDING = 10
# Committed margin across open positions stays below this share of equity.
MAX_COMMITTED_MARGIN = 0.95


@dataclass(frozen=True)
class SimulationConfig:
    initial_capital: float = 10000.0
    leverage: float = 5.0
    fee_rate: float = 0.001
    maintenance_margin_ratio: float = DEFAULT_MAINTENANCE_MARGIN_RATIO
    profit_target: Optional[float] = None
    warmup_bars: Optional[int] = None
    atr_period: int = 14
    snapshot_interval: int = 50


@dataclass
class SimulationContext:
    """Mutable state of one run, owned by the engine for its duration."""

    equity: float
    peak: float
    positions: list[Position] = field(default_factory=list)
    trades: list[Trade] = field(default_factory=list)
    equity_curve: list[EquityPoint] = field(default_factory=list)
    position_sizes: list[PositionSizeRecord] = field(default_factory=list)
    adjustments: list[AdjustmentRecord] = field(default_factory=list)
    risk_snapshots: list[RiskSnapshot] = field(default_factory=list)

    def record_equity(self, candle: Candle) -> EquityPoint:
        self.peak = max(self.peak, self.equity)
        drawdown = (self.peak - self.equity) / self.peak if self.peak > 0 else 0.0
        position_type = self.positions[0].direction if self.positions else None
        point = EquityPoint(
            time=candle.timestamp,
            equity=self.equity,
            drawdown=max(0.0, drawdown),
            has_position=bool(self.positions),
            position_type=position_type,
            price=candle.close,
        )
        self.equity_curve.append(point)
        return point


class BacktestEngine:
    def __init__(
        self,
        config: SimulationConfig,
        strategy: TradingStrategy,
        policy: Optional[RiskPolicy] = None,
        audit_log: Optional[object] = None,
    ) -> None:
        if config.initial_capital <= 0:
            raise ValueError("initial_capital must be positive")
        if config.leverage <= 0:
            raise ValueError("leverage must be positive")
        self.config = config
        self.strategy = strategy
        self.policy = policy
        self._audit_log = audit_log

    def warmup_bars(self) -> int:
        if self.config.warmup_bars is not None:
            return max(0, self.config.warmup_bars)
        return max(MIN_WARMUP_BARS, self.strategy.required_history + WARMUP_PADDING)

    def _log(self, event: str, payload: dict) -> None:
        if self._audit_log is None:
            return
        self._audit_log.log(event, payload)

    def run(self, candles: Sequence[Candle]) -> SimulationResult:
        if not candles:
            raise MarketDataError("No candles supplied to the simulation")

        bars = sorted(candles, key=lambda item: item.timestamp)
        policy = self.policy
        if policy is None:
            policy = RiskManager(RiskConfig(), self.config.initial_capital, audit_log=self._audit_log)
        warmup = self.warmup_bars()
        ctx = SimulationContext(equity=self.config.initial_capital, peak=self.config.initial_capital)

        logger.info(
            "Starting backtest with %d bars: capital %.2f, leverage %sx, fee %.4f, warmup %d",
            len(bars),
            self.config.initial_capital,
            self.config.leverage,
            self.config.fee_rate,
            warmup,
        )

        for index in range(len(bars)):
            self._process_bar(ctx, policy, bars, index, warmup)

        metrics = compute_metrics(ctx.trades, ctx.equity_curve, self.config.initial_capital, ctx.equity)
        logger.info(
            "Backtest finished: equity %.2f, %d trades, win rate %.2f%%, max drawdown %.2f%%",
            ctx.equity,
            metrics.total_trades,
            metrics.win_rate * 100,
            metrics.max_drawdown * 100,
        )
        return SimulationResult(
            initial_capital=self.config.initial_capital,
            final_equity=ctx.equity,
            trades=ctx.trades,
            equity_curve=ctx.equity_curve,
            metrics=metrics,
            open_positions=ctx.positions,
            risk_snapshots=ctx.risk_snapshots,
            position_sizes=ctx.position_sizes,
            adjustments=ctx.adjustments,
        )

    def _process_bar(
        self,
        ctx: SimulationContext,
        policy: RiskPolicy,
        bars: Sequence[Candle],
        index: int,
        warmup: int,
    ) -> None:
        candle = bars[index]

        market_window = policy.market_window
        if market_window and index + 1 >= market_window:
            policy.update_market_data(bars[index + 1 - market_window : index + 1])
        policy.update_equity(ctx.equity, candle.timestamp)

        signal = self._signal(bars, index, warmup)

        for position in list(ctx.positions):
            self._check_exit(ctx, policy, position, candle, signal)

        direction = signal.entry_direction
        if direction is not None and self._can_enter(ctx, policy, direction):
            self._open_position(ctx, policy, bars, index, signal, direction)

        ctx.record_equity(candle)

        interval = self.config.snapshot_interval
        if interval > 0 and (index % interval == 0 or index == len(bars) - 1):
            ctx.risk_snapshots.append(RiskSnapshot(time=candle.timestamp, stats=asdict(policy.stats())))

    def _signal(self, bars: Sequence[Candle], index: int, warmup: int) -> StrategySignal:
        if index < warmup:
            return StrategySignal()
        lookback = max(warmup, self.strategy.required_history)
        window = bars[max(0, index - lookback) : index + 1]
        signal = StrategySignal.coerce(self.strategy.evaluate(window))
        if signal.action != SignalAction.NONE:
            logger.debug("Signal %s at %s (close %.4f)", signal.action.value, bars[index].timestamp, bars[index].close)
        return signal

    @staticmethod
    def _can_enter(ctx: SimulationContext, policy: RiskPolicy, direction: Direction) -> bool:
        if not ctx.positions:
            return True
        if not policy.allows_pyramiding:
            return False
        return all(position.direction == direction for position in ctx.positions)

    def _check_exit(
        self,
        ctx: SimulationContext,
        policy: RiskPolicy,
        position: Position,
        candle: Candle,
        signal: StrategySignal,
    ) -> None:
        direction = position.direction
        if is_liquidated(adverse_price(candle, direction), position.liquidation_price, direction):
            self._close(
                ctx,
                policy,
                position,
                position.liquidation_price,
                candle.timestamp,
                liquidation_loss(position.margin),
                ExitReason.LIQUIDATION,
            )
            return

        if position.stop_loss_price is not None and stop_touched(candle, position.stop_loss_price, direction):
            self._close_at(ctx, policy, position, position.stop_loss_price, candle.timestamp, ExitReason.STOP_LOSS)
            return

        if position.take_profit_price is not None and target_touched(candle, position.take_profit_price, direction):
            self._close_at(ctx, policy, position, position.take_profit_price, candle.timestamp, ExitReason.TAKE_PROFIT)
            return

        if signal.closes(direction):
            self._close_at(ctx, policy, position, candle.close, candle.timestamp, ExitReason.SIGNAL)

    def _close_at(
        self,
        ctx: SimulationContext,
        policy: RiskPolicy,
        position: Position,
        exit_price: float,
        exit_time: datetime,
        reason: ExitReason,
    ) -> None:
        pnl = compute_pnl(
            position.entry_price,
            exit_price,
            position.direction,
            position.quantity,
            self.config.fee_rate,
        )
        self._close(ctx, policy, position, exit_price, exit_time, pnl, reason)

    def _close(
        self,
        ctx: SimulationContext,
        policy: RiskPolicy,
        position: Position,
        exit_price: float,
        exit_time: datetime,
        pnl: float,
        reason: ExitReason,
    ) -> Trade:
        trade = Trade.from_position(position, exit_price, exit_time, pnl, reason)
        ctx.positions.remove(position)
        ctx.trades.append(trade)
        ctx.equity += pnl
        policy.record_trade(trade)
        policy.update_equity(ctx.equity, exit_time)

        logger.info(
            "%s %s exit at %.4f (%s): pnl %.2f, equity %.2f",
            exit_time.isoformat(),
            position.direction.value.upper(),
            exit_price,
            reason.value,
            pnl,
            ctx.equity,
        )
        self._log(
            "trade_closed",
            {
                "direction": position.direction.value,
                "entry_price": position.entry_price,
                "exit_price": exit_price,
                "exit_time": exit_time.isoformat(),
                "exit_reason": reason.value,
                "pnl": pnl,
                "equity": ctx.equity,
            },
        )
        return trade

    def _open_position(
        self,
        ctx: SimulationContext,
        policy: RiskPolicy,
        bars: Sequence[Candle],
        index: int,
        signal: StrategySignal,
        direction: Direction,
    ) -> Optional[Position]:
        candle = bars[index]
        headroom = ctx.equity * MAX_COMMITTED_MARGIN - sum(position.margin for position in ctx.positions)
        if headroom <= 0:
            logger.info("%s skipped %s entry: no margin headroom", candle.timestamp.isoformat(), direction.value.upper())
            return None
        candidate = TradeCandidate(entry_time=candle.timestamp, entry_price=candle.close, direction=direction)
        sizing = policy.position_size(candidate, self.config.leverage)
        recommendation = policy.recommendation()

        ctx.position_sizes.append(
            PositionSizeRecord(
                time=candle.timestamp,
                direction=direction,
                recommended_size=sizing.size,
                recommended_margin=sizing.margin,
                risk_percentage=sizing.risk_percentage,
                reason=sizing.reason,
            )
        )
        ctx.adjustments.append(
            AdjustmentRecord(
                time=candle.timestamp,
                action=recommendation.action.value,
                reason=recommendation.reason,
                adjustment=recommendation.adjustment,
                severity=recommendation.severity,
            )
        )

        if not sizing.allow or recommendation.action == RecommendationAction.STOP:
            reason = sizing.reason if not sizing.allow else recommendation.reason
            logger.info("%s skipped %s entry: %s", candle.timestamp.isoformat(), direction.value.upper(), reason)
            return None

        size = sizing.size * recommendation.adjustment
        margin = sizing.margin * recommendation.adjustment
        if margin > headroom:
            size *= headroom / margin
            margin = headroom

        atr = None
        period = self.config.atr_period
        if period > 0 and index >= period:
            atr = average_true_range(bars[index - period : index + 1], period)
        stop_price = policy.stop_loss(candidate, sizing, atr)

        take_profit = signal.take_profit
        if take_profit is None and self.config.profit_target is not None:
            take_profit = profit_target_price(
                candle.close,
                direction,
                self.config.profit_target,
                self.config.leverage,
            )

        position = Position(
            direction=direction,
            entry_price=candle.close,
            entry_time=candle.timestamp,
            size=size,
            margin=margin,
            liquidation_price=liquidation_price(
                candle.close,
                direction,
                self.config.leverage,
                self.config.maintenance_margin_ratio,
            ),
            stop_loss_price=stop_price,
            take_profit_price=take_profit,
            pyramid_level=sizing.level,
        )
        ctx.positions.append(position)

        logger.info(
            "%s %s entry at %.4f: size %.2f, margin %.2f (%.2f%% risk, %s)",
            candle.timestamp.isoformat(),
            direction.value.upper(),
            candle.close,
            size,
            margin,
            sizing.risk_percentage * 100,
            recommendation.action.value,
        )
        return position
