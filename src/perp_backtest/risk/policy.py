"""Risk policy capability consumed by the simulation engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Sequence

from perp_backtest.risk.models import (
    RecommendationAction,
    RiskStats,
    SizingResult,
    TradeCandidate,
    TradeRecommendation,
)
from perp_backtest.simulator.models import Candle, Trade


class RiskPolicy(ABC):
    """Sizing, stop placement and throttling for the simulation engine."""

    market_window: int = 0
    allows_pyramiding: bool = False

    @abstractmethod
    def update_equity(self, equity: float, time: Optional[datetime] = None) -> float:
        raise NotImplementedError

    @abstractmethod
    def update_market_data(self, window: Sequence[Candle]) -> None:
        raise NotImplementedError

    @abstractmethod
    def position_size(self, candidate: TradeCandidate, leverage: float) -> SizingResult:
        raise NotImplementedError

    @abstractmethod
    def stop_loss(
        self,
        candidate: TradeCandidate,
        sizing: SizingResult,
        atr: Optional[float] = None,
    ) -> Optional[float]:
        raise NotImplementedError

    @abstractmethod
    def recommendation(self) -> TradeRecommendation:
        raise NotImplementedError

    @abstractmethod
    def record_trade(self, trade: Trade) -> None:
        raise NotImplementedError

    @abstractmethod
    def stats(self) -> RiskStats:
        raise NotImplementedError


class FixedFractionPolicy(RiskPolicy):
    """Commits a constant fraction of equity per trade with no stop and no throttling."""

    def __init__(self, initial_capital: float, position_fraction: float) -> None:
        if not 0 < position_fraction < 1:
            raise ValueError("position_fraction must be in (0, 1)")
        self.initial_capital = initial_capital
        self.position_fraction = position_fraction
        self.current_equity = initial_capital
        self.high_water_mark = initial_capital
        self.current_drawdown = 0.0
        self._open: list[TradeCandidate] = []

    def update_equity(self, equity: float, time: Optional[datetime] = None) -> float:
        self.current_equity = equity
        self.high_water_mark = max(self.high_water_mark, equity)
        if self.high_water_mark > 0:
            self.current_drawdown = max(0.0, (self.high_water_mark - equity) / self.high_water_mark)
        return self.current_equity

    def update_market_data(self, window: Sequence[Candle]) -> None:
        return None

    def position_size(self, candidate: TradeCandidate, leverage: float) -> SizingResult:
        if self._open:
            return SizingResult.rejected("max open positions reached")
        margin = self.current_equity * self.position_fraction
        if margin <= 0:
            return SizingResult.rejected("no equity available")
        self._open.append(candidate)
        return SizingResult(
            size=margin * leverage,
            margin=margin,
            risk_amount=margin,
            risk_percentage=self.position_fraction,
            reason="fixed fraction",
        )

    def stop_loss(
        self,
        candidate: TradeCandidate,
        sizing: SizingResult,
        atr: Optional[float] = None,
    ) -> Optional[float]:
        return None

    def recommendation(self) -> TradeRecommendation:
        return TradeRecommendation(RecommendationAction.NORMAL, "Fixed fraction sizing")

    def record_trade(self, trade: Trade) -> None:
        self._open = [
            item
            for item in self._open
            if item.entry_time != trade.entry_time or item.entry_price != trade.entry_price
        ]

    def stats(self) -> RiskStats:
        return RiskStats(
            current_equity=self.current_equity,
            initial_capital=self.initial_capital,
            high_water_mark=self.high_water_mark,
            current_drawdown=self.current_drawdown,
            max_risk_per_trade=self.position_fraction,
            open_positions=len(self._open),
            consecutive_wins=0,
            consecutive_losses=0,
            win_rate=0.0,
            win_loss_ratio=1.0,
            price_volatility=0.0,
        )

