"""Common indicator helpers for strategies and stop placement."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from perp_backtest.simulator.models import Candle


class IndicatorSeries:
    def __init__(self, candles: Iterable[Candle] = ()) -> None:
        self.closes: list[float] = []
        self.highs: list[float] = []
        self.lows: list[float] = []
        for candle in candles:
            self.update(candle)

    def update(self, candle: Candle) -> None:
        self.closes.append(candle.close)
        self.highs.append(candle.high)
        self.lows.append(candle.low)

    def sma(self, window: int) -> Optional[float]:
        if window <= 0 or len(self.closes) < window:
            return None
        slice_ = self.closes[-window:]
        return sum(slice_) / window

    def stddev(self, window: int) -> Optional[float]:
        if window <= 0 or len(self.closes) < window:
            return None
        slice_ = self.closes[-window:]
        mean = sum(slice_) / window
        variance = sum((value - mean) ** 2 for value in slice_) / window
        return variance**0.5

    def bollinger(self, window: int, stddevs: float) -> Optional[tuple[float, float, float]]:
        mean = self.sma(window)
        deviation = self.stddev(window)
        if mean is None or deviation is None:
            return None
        upper = mean + stddevs * deviation
        lower = mean - stddevs * deviation
        return mean, upper, lower

    def rsi(self, period: int) -> Optional[float]:
        if len(self.closes) < period + 1:
            return None
        deltas = [
            self.closes[i] - self.closes[i - 1]
            for i in range(len(self.closes) - period, len(self.closes))
        ]
        gains = sum(delta for delta in deltas if delta > 0)
        losses = -sum(delta for delta in deltas if delta < 0)
        if gains == 0 and losses == 0:
            return 50.0
        if losses == 0:
            return 100.0
        rs = gains / losses
        return 100.0 - (100.0 / (1.0 + rs))

    def atr(self, period: int) -> Optional[float]:
        if period <= 0 or len(self.closes) < period + 1:
            return None
        true_ranges = []
        for index in range(len(self.closes) - period, len(self.closes)):
            high = self.highs[index]
            low = self.lows[index]
            prev_close = self.closes[index - 1]
            true_ranges.append(max(high - low, abs(high - prev_close), abs(low - prev_close)))
        return sum(true_ranges) / period

    def adx(self, period: int) -> Optional[float]:
        if len(self.closes) < period + 1:
            return None
        trs: list[float] = []
        plus_dm: list[float] = []
        minus_dm: list[float] = []
        for idx in range(1, len(self.closes)):
            high = self.highs[idx]
            low = self.lows[idx]
            prev_high = self.highs[idx - 1]
            prev_low = self.lows[idx - 1]
            prev_close = self.closes[idx - 1]
            up_move = high - prev_high
            down_move = prev_low - low
            trs.append(max(high - low, abs(high - prev_close), abs(low - prev_close)))
            plus_dm.append(up_move if up_move > down_move and up_move > 0 else 0.0)
            minus_dm.append(down_move if down_move > up_move and down_move > 0 else 0.0)

        dx_values: list[float] = []
        for end in range(period, len(trs) + 1):
            tr_sum = sum(trs[end - period : end])
            if tr_sum <= 0:
                continue
            plus_di = 100.0 * sum(plus_dm[end - period : end]) / tr_sum
            minus_di = 100.0 * sum(minus_dm[end - period : end]) / tr_sum
            denom = plus_di + minus_di
            dx_values.append(0.0 if denom <= 0 else 100.0 * abs(plus_di - minus_di) / denom)

        if not dx_values:
            return None
        window = min(period, len(dx_values))
        return sum(dx_values[-window:]) / window


def average_true_range(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    """Simple ATR over the last ``period`` true ranges of ``candles``."""
    if len(candles) < period + 1:
        return None
    return IndicatorSeries(candles[-(period + 1) :]).atr(period)
