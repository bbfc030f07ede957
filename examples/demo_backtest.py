import math
from datetime import datetime, timedelta, timezone

from perp_backtest.risk import RiskConfig, RiskManager
from perp_backtest.simulator import Candle
from perp_backtest.simulator.engine import BacktestEngine, SimulationConfig
from perp_backtest.strategy import BollingerRsiStrategy


start = datetime(2024, 1, 1, tzinfo=timezone.utc)
candles = []
price = 100.0
for index in range(400):
    close = 100.0 + 8.0 * math.sin(index / 9.0) + 3.0 * math.sin(index / 2.3)
    candles.append(
        Candle(
            timestamp=start + timedelta(hours=index),
            open=price,
            high=max(price, close) + 0.6,
            low=min(price, close) - 0.6,
            close=close,
        )
    )
    price = close

config = SimulationConfig(initial_capital=1000.0, leverage=5.0, fee_rate=0.001, profit_target=0.5)
policy = RiskManager(
    RiskConfig(use_volatility_adjustment=True, use_anti_martingale=True),
    config.initial_capital,
)
engine = BacktestEngine(config, BollingerRsiStrategy(), policy)
result = engine.run(candles)

metrics = result.metrics
print("Final equity:", round(result.final_equity, 2))
print("Trades:", metrics.total_trades, "win rate:", round(metrics.win_rate, 3))
print("By exit reason:", metrics.trades_by_exit_reason)
print("Open at end:", len(result.open_positions))
