"""Strategy interface consumed by the simulation engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

from perp_backtest.simulator.models import Candle


class TradingStrategy(ABC):
    strategy_id: str

    @property
    def required_history(self) -> int:
        """Longest indicator period the strategy needs."""
        return 0

    @abstractmethod
    def evaluate(self, window: Sequence[Candle]) -> Any:
        """Signal for the last candle of ``window``.

        May return a ``StrategySignal``, a ``SignalAction`` name or a signed
        number. Must not mutate state between calls.
        """
        raise NotImplementedError
