"""Simulation data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1

    @property
    def opposite(self) -> "Direction":
        return Direction.SHORT if self is Direction.LONG else Direction.LONG


class ExitReason(str, Enum):
    SIGNAL = "SIGNAL"
    TAKE_PROFIT = "TAKE_PROFIT"
    STOP_LOSS = "STOP_LOSS"
    LIQUIDATION = "LIQUIDATION"


class SignalAction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    CLOSE_LONG = "CLOSE_LONG"
    CLOSE_SHORT = "CLOSE_SHORT"
    NONE = "NONE"


@dataclass(frozen=True)
class Candle:
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class StrategySignal:
    action: SignalAction = SignalAction.NONE
    take_profit: Optional[float] = None

    @property
    def entry_direction(self) -> Optional[Direction]:
        if self.action == SignalAction.LONG:
            return Direction.LONG
        if self.action == SignalAction.SHORT:
            return Direction.SHORT
        return None

    def closes(self, direction: Direction) -> bool:
        """True when this signal exits a position held in ``direction``."""
        if direction == Direction.LONG:
            return self.action in (SignalAction.SHORT, SignalAction.CLOSE_LONG)
        return self.action in (SignalAction.LONG, SignalAction.CLOSE_SHORT)

    @staticmethod
    def coerce(value: Any) -> "StrategySignal":
        """Normalise strategy output.

        Accepts a ``StrategySignal``, a ``SignalAction`` or its name, or a
        signed number where positive means long, negative short and zero none.
        """
        if value is None:
            return StrategySignal()
        if isinstance(value, StrategySignal):
            return value
        if isinstance(value, SignalAction):
            return StrategySignal(action=value)
        if isinstance(value, str):
            try:
                return StrategySignal(action=SignalAction(value.upper()))
            except ValueError as exc:
                raise ValueError(f"Unknown strategy signal: {value!r}") from exc
        if isinstance(value, bool):
            raise ValueError(f"Unknown strategy signal: {value!r}")
        if isinstance(value, (int, float)):
            if value != value:
                raise ValueError("Strategy signal is NaN")
            if value > 0:
                return StrategySignal(action=SignalAction.LONG)
            if value < 0:
                return StrategySignal(action=SignalAction.SHORT)
            return StrategySignal()
        raise ValueError(f"Unknown strategy signal: {value!r}")


@dataclass
class Position:
    direction: Direction
    entry_price: float
    entry_time: datetime
    size: float  # notional exposure
    margin: float
    liquidation_price: float
    stop_loss_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    pyramid_level: int = 1

    @property
    def quantity(self) -> float:
        if self.entry_price <= 0:
            return 0.0
        return self.size / self.entry_price


@dataclass(frozen=True)
class Trade:
    direction: Direction
    entry_price: float
    entry_time: datetime
    size: float
    margin: float
    liquidation_price: float
    stop_loss_price: Optional[float]
    take_profit_price: Optional[float]
    pyramid_level: int
    exit_price: float
    exit_time: datetime
    pnl: float
    exit_reason: ExitReason

    @staticmethod
    def from_position(
        position: Position,
        exit_price: float,
        exit_time: datetime,
        pnl: float,
        exit_reason: ExitReason,
    ) -> "Trade":
        return Trade(
            direction=position.direction,
            entry_price=position.entry_price,
            entry_time=position.entry_time,
            size=position.size,
            margin=position.margin,
            liquidation_price=position.liquidation_price,
            stop_loss_price=position.stop_loss_price,
            take_profit_price=position.take_profit_price,
            pyramid_level=position.pyramid_level,
            exit_price=exit_price,
            exit_time=exit_time,
            pnl=pnl,
            exit_reason=exit_reason,
        )


@dataclass(frozen=True)
class EquityPoint:
    time: datetime
    equity: float
    drawdown: float
    has_position: bool
    position_type: Optional[Direction]
    price: float


@dataclass(frozen=True)
class PositionSizeRecord:
    time: datetime
    direction: Direction
    recommended_size: float
    recommended_margin: float
    risk_percentage: float
    reason: str


@dataclass(frozen=True)
class AdjustmentRecord:
    time: datetime
    action: str
    reason: str
    adjustment: float
    severity: str


@dataclass(frozen=True)
class RiskSnapshot:
    time: datetime
    stats: dict[str, Any]


@dataclass(frozen=True)
class BacktestMetrics:
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    profit_factor: float
    net_profit: float
    final_equity: float
    sharpe_ratio: float
    max_drawdown: float
    average_profit_per_trade: float
    average_win: float
    average_loss: float
    largest_win: float
    largest_loss: float
    long_trades: int
    short_trades: int
    margin_calls: int
    trades_by_exit_reason: dict[str, int] = field(default_factory=dict)
    profit_by_exit_reason: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class SimulationResult:
    initial_capital: float
    final_equity: float
    trades: list[Trade]
    equity_curve: list[EquityPoint]
    metrics: BacktestMetrics
    open_positions: list[Position]
    risk_snapshots: list[RiskSnapshot]
    position_sizes: list[PositionSizeRecord]
    adjustments: list[AdjustmentRecord]
