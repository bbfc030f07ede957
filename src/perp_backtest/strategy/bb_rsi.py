"""Mean reversion strategy with Bollinger + RSI filters and an ADX range gate."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from perp_backtest.simulator.models import Candle, SignalAction, StrategySignal
from perp_backtest.strategy.base import TradingStrategy
from perp_backtest.strategy.indicators import IndicatorSeries


@dataclass(frozen=True)
class BollingerRsiParams:
    bollinger_window: int = 20
    bollinger_stddev: float = 2.0
    rsi_period: int = 14
    rsi_overbought: float = 70.0
    rsi_oversold: float = 30.0
    adx_period: int = 14
    adx_threshold: float = 25.0

    @staticmethod
    def from_dict(data: dict) -> "BollingerRsiParams":
        return BollingerRsiParams(
            bollinger_window=int(data.get("bollinger_window", 20)),
            bollinger_stddev=float(data.get("bollinger_stddev", 2.0)),
            rsi_period=int(data.get("rsi_period", 14)),
            rsi_overbought=float(data.get("rsi_overbought", 70.0)),
            rsi_oversold=float(data.get("rsi_oversold", 30.0)),
            adx_period=int(data.get("adx_period", 14)),
            adx_threshold=float(data.get("adx_threshold", 25.0)),
        )


class BollingerRsiStrategy(TradingStrategy):
    strategy_id = "bb_rsi_v1"

    def __init__(self, params: BollingerRsiParams | None = None) -> None:
        self.params = params or BollingerRsiParams()

    @property
    def required_history(self) -> int:
        return max(self.params.bollinger_window, self.params.rsi_period + 1, self.params.adx_period + 1)

    def evaluate(self, window: Sequence[Candle]) -> StrategySignal:
        params = self.params
        series = IndicatorSeries(window)
        bands = series.bollinger(params.bollinger_window, params.bollinger_stddev)
        rsi_value = series.rsi(params.rsi_period)
        adx_value = series.adx(params.adx_period)
        if bands is None or rsi_value is None or adx_value is None:
            return StrategySignal()
        _, upper_band, lower_band = bands
        close = window[-1].close

        ranging = adx_value < params.adx_threshold
        if ranging and close <= lower_band and rsi_value <= params.rsi_oversold:
            return StrategySignal(SignalAction.LONG, take_profit=upper_band)
        if ranging and close >= upper_band and rsi_value >= params.rsi_overbought:
            return StrategySignal(SignalAction.SHORT, take_profit=lower_band)
        if rsi_value >= params.rsi_overbought:
            return StrategySignal(SignalAction.CLOSE_LONG)
        if rsi_value <= params.rsi_oversold:
            return StrategySignal(SignalAction.CLOSE_SHORT)
        return StrategySignal()


def build_bb_rsi_from_config(parameters: dict) -> BollingerRsiStrategy:
    return BollingerRsiStrategy(BollingerRsiParams.from_dict(parameters))
