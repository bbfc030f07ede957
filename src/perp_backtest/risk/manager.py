"""Risk manager: position sizing, stop placement and trade throttling."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Optional, Sequence

from perp_backtest.risk.models import (
    EquityRecord,
    OpenPositionRecord,
    RecommendationAction,
    RiskConfig,
    RiskMode,
    RiskStats,
    SizingResult,
    TradeCandidate,
    TradeRecommendation,
)
from perp_backtest.risk.policy import FixedFractionPolicy, RiskPolicy
from perp_backtest.simulator.models import Candle, Direction, Trade

logger = logging.getLogger(__name__)

TRADE_HISTORY_LIMIT = 50
KELLY_MIN_TRADES = 10
STREAK_CAP = 3
REFERENCE_VOLATILITY = 0.02
MAX_VOLATILITY_SCALE = 2.0
HIGH_VOLATILITY = 0.04
ATR_STOP_MULTIPLIER = 2.0
DEFAULT_STOP_PCT = 0.025


class RiskManager(RiskPolicy):
    def __init__(
        self,
        config: RiskConfig,
        initial_capital: float,
        audit_log: Optional[object] = None,
    ) -> None:
        if initial_capital <= 0:
            raise ValueError("initial_capital must be positive")
        for name in ("max_risk_per_trade", "max_position_size"):
            if not 0 < getattr(config, name) < 1:
                raise ValueError(f"{name} must be in (0, 1)")
        self.config = config
        self.initial_capital = initial_capital
        self.current_equity = initial_capital
        self.high_water_mark = initial_capital
        self.current_drawdown = 0.0
        self.consecutive_wins = 0
        self.consecutive_losses = 0
        self.win_rate = 0.5
        self.win_loss_ratio = 1.0
        self.price_volatility = 0.0
        self.open_positions: list[OpenPositionRecord] = []
        self.last_trades: list[Trade] = []
        self.position_size_history: list[SizingResult] = []
        self.equity_history: list[EquityRecord] = [EquityRecord(initial_capital, 0.0)]
        self._audit_log = audit_log

    @property
    def market_window(self) -> int:
        return self.config.volatility_window + 1

    @property
    def allows_pyramiding(self) -> bool:
        return self.config.pyramiding

    def _log(self, event: str, payload: dict) -> None:
        if self._audit_log is None:
            return
        self._audit_log.log(event, payload)

    def update_equity(self, equity: float, time: Optional[datetime] = None) -> float:
        self.current_equity = equity
        if equity > self.high_water_mark:
            self.high_water_mark = equity
        self.current_drawdown = max(0.0, (self.high_water_mark - equity) / self.high_water_mark)
        self.equity_history.append(EquityRecord(equity, self.current_drawdown, time))
        return self.current_equity

    def update_market_data(self, window: Sequence[Candle]) -> None:
        if not self.config.use_volatility_adjustment:
            return
        if len(window) <= self.config.volatility_window:
            return
        recent = window[-(self.config.volatility_window + 1) :]
        returns = [
            (recent[i].close - recent[i - 1].close) / recent[i - 1].close
            for i in range(1, len(recent))
            if recent[i - 1].close != 0
        ]
        if not returns:
            self.price_volatility = 0.0
            return
        mean = sum(returns) / len(returns)
        variance = sum((value - mean) ** 2 for value in returns) / len(returns)
        self.price_volatility = math.sqrt(variance)

    def record_trade(self, trade: Trade) -> None:
        self.last_trades.insert(0, trade)
        del self.last_trades[TRADE_HISTORY_LIMIT:]

        if trade.pnl > 0:
            self.consecutive_wins += 1
            self.consecutive_losses = 0
        elif trade.pnl < 0:
            self.consecutive_losses += 1
            self.consecutive_wins = 0

        wins = [t.pnl for t in self.last_trades if t.pnl > 0]
        losses = [t.pnl for t in self.last_trades if t.pnl < 0]
        self.win_rate = len(wins) / len(self.last_trades)
        average_win = sum(wins) / len(wins) if wins else 0.0
        average_loss = abs(sum(losses) / len(losses)) if losses else 0.0
        self.win_loss_ratio = average_win / average_loss if average_loss > 0 else 1.0

        self.open_positions = [
            pos
            for pos in self.open_positions
            if pos.entry_time != trade.entry_time or pos.entry_price != trade.entry_price
        ]
        self._log(
            "trade_recorded",
            {
                "pnl": trade.pnl,
                "exit_reason": trade.exit_reason.value,
                "consecutive_wins": self.consecutive_wins,
                "consecutive_losses": self.consecutive_losses,
                "win_rate": self.win_rate,
                "win_loss_ratio": self.win_loss_ratio,
            },
        )

    def kelly_percentage(self) -> Optional[float]:
        """Fractional Kelly stake, or None until enough trades are recorded."""
        if len(self.last_trades) < KELLY_MIN_TRADES:
            return None
        ratio = self.win_loss_ratio
        if ratio <= 0:
            return 0.0
        kelly = (self.win_rate * ratio - (1.0 - self.win_rate)) / ratio
        return max(0.0, kelly * self.config.kelly_fraction)

    def risk_percentage(self) -> float:
        config = self.config
        risk_pct = config.max_risk_per_trade

        if config.use_volatility_adjustment and self.price_volatility > 0:
            risk_pct /= min(self.price_volatility / REFERENCE_VOLATILITY, MAX_VOLATILITY_SCALE)

        if config.use_anti_martingale:
            if self.consecutive_wins > 0:
                risk_pct *= config.win_multiplier ** min(self.consecutive_wins, STREAK_CAP)
            elif self.consecutive_losses > 0:
                risk_pct *= config.loss_multiplier ** min(self.consecutive_losses, STREAK_CAP)

        if config.use_kelly_criterion:
            kelly = self.kelly_percentage()
            if kelly is not None:
                risk_pct = min(risk_pct, kelly)

        return min(risk_pct, config.max_position_size)

    def _committed_margin(self) -> float:
        return sum(pos.margin for pos in self.open_positions)

    def position_size(self, candidate: TradeCandidate, leverage: float) -> SizingResult:
        return self.calculate_position_size(candidate, leverage)

    def calculate_position_size(self, candidate: TradeCandidate, leverage: float = 1.0) -> SizingResult:
        config = self.config
        if self.current_drawdown >= config.max_drawdown:
            return self._reject("max drawdown reached", candidate)

        if len(self.open_positions) >= config.max_open_positions and not config.pyramiding:
            return self._reject("max open positions reached", candidate)

        available_capital = self.current_equity
        if self.open_positions and not config.pyramiding:
            available_capital -= self._committed_margin()

        risk_pct = self.risk_percentage()
        margin = max(0.0, available_capital * risk_pct)
        size = margin * leverage
        level = 1
        reason = "standard position"

        if config.pyramiding:
            same_direction = sum(1 for pos in self.open_positions if pos.direction == candidate.direction)
            level = same_direction + 1
            if level > config.pyramiding_levels:
                return self._reject("max pyramiding levels reached", candidate)
            factor = 1.0 / level
            margin *= factor
            size *= factor
            risk_pct *= factor
            reason = f"pyramiding level {level}"

        if size <= 0:
            return self._reject("no capital available", candidate)

        result = SizingResult(
            size=size,
            margin=margin,
            risk_amount=margin,
            risk_percentage=risk_pct,
            reason=reason,
            level=level,
        )
        self.open_positions.append(
            OpenPositionRecord(
                entry_time=candidate.entry_time,
                entry_price=candidate.entry_price,
                direction=candidate.direction,
                size=size,
                margin=margin,
                level=level,
            )
        )
        self.position_size_history.append(result)
        self._log(
            "position_size",
            {
                "direction": candidate.direction.value,
                "entry_price": candidate.entry_price,
                "equity": self.current_equity,
                "size": size,
                "margin": margin,
                "risk_percentage": risk_pct,
                "reason": reason,
            },
        )
        return result

    def _reject(self, reason: str, candidate: TradeCandidate) -> SizingResult:
        result = SizingResult.rejected(reason)
        self.position_size_history.append(result)
        logger.debug("Sizing rejected for %s entry: %s", candidate.direction.value, reason)
        self._log(
            "position_size",
            {
                "direction": candidate.direction.value,
                "entry_price": candidate.entry_price,
                "equity": self.current_equity,
                "size": 0.0,
                "reason": reason,
            },
        )
        return result

    def stop_loss(
        self,
        candidate: TradeCandidate,
        sizing: SizingResult,
        atr: Optional[float] = None,
    ) -> Optional[float]:
        return self.calculate_stop_loss(candidate, sizing, atr)

    def calculate_stop_loss(
        self,
        candidate: TradeCandidate,
        sizing: Optional[SizingResult] = None,
        atr: Optional[float] = None,
    ) -> float:
        if atr is not None:
            distance = atr * ATR_STOP_MULTIPLIER
        else:
            distance = candidate.entry_price * DEFAULT_STOP_PCT
        if candidate.direction == Direction.LONG:
            return candidate.entry_price - distance
        return candidate.entry_price + distance

    def recommendation(self) -> TradeRecommendation:
        decision = self.get_trade_recommendation()
        self._log(
            "recommendation",
            {
                "action": decision.action.value,
                "reason": decision.reason,
                "adjustment": decision.adjustment,
                "severity": decision.severity,
            },
        )
        return decision

    def get_trade_recommendation(self) -> TradeRecommendation:
        config = self.config
        drawdown = self.current_drawdown
        if drawdown >= config.max_drawdown:
            return TradeRecommendation(
                RecommendationAction.STOP,
                f"Max drawdown reached ({drawdown * 100:.2f}%)",
                adjustment=0.0,
                severity="high",
            )

        if drawdown >= config.max_drawdown * 0.7:
            return TradeRecommendation(
                RecommendationAction.REDUCE,
                f"High drawdown ({drawdown * 100:.2f}%)",
                adjustment=0.5,
                severity="medium",
            )

        if self.consecutive_losses >= 3:
            return TradeRecommendation(
                RecommendationAction.REDUCE,
                f"{self.consecutive_losses} consecutive losses",
                adjustment=0.8**self.consecutive_losses,
                severity="medium",
            )

        if config.use_volatility_adjustment and self.price_volatility > HIGH_VOLATILITY:
            return TradeRecommendation(
                RecommendationAction.REDUCE,
                f"High volatility ({self.price_volatility * 100:.2f}%)",
                adjustment=0.7,
                severity="medium",
            )

        if self.consecutive_wins >= 3 and drawdown < 0.1:
            return TradeRecommendation(
                RecommendationAction.INCREASE,
                f"{self.consecutive_wins} consecutive wins with low drawdown",
                adjustment=min(1.5, 1.0 + 0.1 * self.consecutive_wins),
                severity="low",
            )

        return TradeRecommendation(RecommendationAction.NORMAL, "Regular trading conditions")

    def stats(self) -> RiskStats:
        return RiskStats(
            current_equity=self.current_equity,
            initial_capital=self.initial_capital,
            high_water_mark=self.high_water_mark,
            current_drawdown=self.current_drawdown,
            max_risk_per_trade=self.config.max_risk_per_trade,
            open_positions=len(self.open_positions),
            consecutive_wins=self.consecutive_wins,
            consecutive_losses=self.consecutive_losses,
            win_rate=self.win_rate,
            win_loss_ratio=self.win_loss_ratio,
            price_volatility=self.price_volatility,
        )


def build_policy(config: RiskConfig, initial_capital: float, audit_log: Optional[object] = None) -> RiskPolicy:
    if config.mode == RiskMode.FIXED:
        return FixedFractionPolicy(initial_capital, config.position_fraction)
    return RiskManager(config, initial_capital, audit_log=audit_log)
