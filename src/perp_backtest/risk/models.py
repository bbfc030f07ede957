"""Risk policy configuration and decision records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from perp_backtest.simulator.models import Direction


class RiskMode(str, Enum):
    RISK_MANAGED = "risk_managed"
    FIXED = "fixed"


class RecommendationAction(str, Enum):
    STOP = "stop"
    REDUCE = "reduce"
    INCREASE = "increase"
    NORMAL = "normal"


@dataclass(frozen=True)
class RiskConfig:
    mode: RiskMode = RiskMode.RISK_MANAGED
    max_risk_per_trade: float = 0.02
    max_position_size: float = 0.5
    max_open_positions: int = 1
    max_drawdown: float = 0.25
    use_volatility_adjustment: bool = False
    volatility_window: int = 20
    pyramiding: bool = False
    pyramiding_levels: int = 3
    use_anti_martingale: bool = False
    win_multiplier: float = 1.5
    loss_multiplier: float = 0.7
    use_kelly_criterion: bool = False
    kelly_fraction: float = 0.5
    position_fraction: float = 0.02


@dataclass(frozen=True)
class TradeCandidate:
    entry_time: datetime
    entry_price: float
    direction: Direction


@dataclass(frozen=True)
class SizingResult:
    size: float
    margin: float
    risk_amount: float
    risk_percentage: float
    reason: str
    level: int = 1

    @property
    def allow(self) -> bool:
        return self.size > 0

    @staticmethod
    def rejected(reason: str) -> "SizingResult":
        return SizingResult(0.0, 0.0, 0.0, 0.0, reason, level=0)


@dataclass(frozen=True)
class TradeRecommendation:
    action: RecommendationAction
    reason: str
    adjustment: float = 1.0
    severity: str = "low"


@dataclass(frozen=True)
class OpenPositionRecord:
    entry_time: datetime
    entry_price: float
    direction: Direction
    size: float
    margin: float
    level: int


@dataclass(frozen=True)
class RiskStats:
    current_equity: float
    initial_capital: float
    high_water_mark: float
    current_drawdown: float
    max_risk_per_trade: float
    open_positions: int
    consecutive_wins: int
    consecutive_losses: int
    win_rate: float
    win_loss_ratio: float
    price_volatility: float


@dataclass(frozen=True)
class EquityRecord:
    equity: float
    drawdown: float
    time: Optional[datetime] = None
