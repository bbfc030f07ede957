import math
from datetime import datetime, timedelta, timezone

import pytest

from perp_backtest.risk import FixedFractionPolicy, RiskConfig, RiskManager
from perp_backtest.simulator import (
    Candle,
    Direction,
    ExitReason,
    MarketDataError,
    SignalAction,
    StrategySignal,
)
from perp_backtest.simulator.engine import BacktestEngine, SimulationConfig
from perp_backtest.strategy import BollingerRsiStrategy, TradingStrategy

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


class ScriptedStrategy(TradingStrategy):
    """Emits pre-arranged signals keyed by bar index."""

    strategy_id = "scripted"

    def __init__(self, signals):
        self.signals = signals

    def evaluate(self, window):
        index = int((window[-1].timestamp - START) / timedelta(hours=1))
        return self.signals.get(index)


def _bars(rows):
    return [
        Candle(START + timedelta(hours=i), open_, high, low, close)
        for i, (open_, high, low, close) in enumerate(rows)
    ]


def _config(**overrides):
    params = dict(initial_capital=1000.0, leverage=5.0, fee_rate=0.001, warmup_bars=0)
    params.update(overrides)
    return SimulationConfig(**params)


def _engine(signals, policy=None, **overrides):
    config = _config(**overrides)
    if policy is None:
        policy = RiskManager(RiskConfig(), config.initial_capital)
    return BacktestEngine(config, ScriptedStrategy(signals), policy)


def test_take_profit_round_trip():
    bars = _bars([(100, 100.5, 99.5, 100), (100, 111, 99, 105)])
    engine = _engine({0: StrategySignal(SignalAction.LONG, take_profit=110.0)})
    result = engine.run(bars)

    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.exit_reason == ExitReason.TAKE_PROFIT
    assert trade.exit_price == 110.0
    assert trade.margin == pytest.approx(20.0)
    assert trade.size == pytest.approx(100.0)

    gross = 20.0 * 5.0 * 0.10
    fees = (100.0 + 110.0) * 0.001
    assert trade.pnl == pytest.approx(gross - fees)
    assert result.final_equity == pytest.approx(1000.0 + gross - fees)
    assert result.equity_curve[-1].equity == pytest.approx(result.final_equity)


def test_liquidation_precedes_stop_and_target():
    bars = _bars([(100, 100.5, 99.5, 100), (100, 111, 80, 100)])
    engine = _engine({0: StrategySignal(SignalAction.LONG, take_profit=110.0)})
    result = engine.run(bars)

    trade = result.trades[0]
    assert trade.liquidation_price == pytest.approx(80.5)
    assert trade.stop_loss_price == pytest.approx(97.5)
    assert trade.exit_reason == ExitReason.LIQUIDATION
    assert trade.exit_price == pytest.approx(80.5)
    assert trade.pnl == pytest.approx(-20.0)
    assert result.final_equity == pytest.approx(980.0)
    assert result.metrics.margin_calls == 1


def test_short_liquidation_on_high():
    bars = _bars([(100, 100.5, 99.5, 100), (100, 120, 99, 100)])
    result = _engine({0: "SHORT"}).run(bars)
    trade = result.trades[0]
    assert trade.direction == Direction.SHORT
    assert trade.exit_reason == ExitReason.LIQUIDATION
    assert trade.exit_price == pytest.approx(119.5)


def test_stop_loss_exit_at_stop_price():
    bars = _bars([(100, 100.5, 99.5, 100), (100, 101, 97, 98)])
    result = _engine({0: SignalAction.LONG}).run(bars)
    trade = result.trades[0]
    assert trade.exit_reason == ExitReason.STOP_LOSS
    assert trade.exit_price == pytest.approx(97.5)
    assert trade.pnl == pytest.approx(-2.5 - (100.0 + 97.5) * 0.001)


def test_signal_exit_at_close():
    bars = _bars([(100, 100.5, 99.5, 100), (100, 102, 99, 101)])
    result = _engine({0: 1, 1: SignalAction.CLOSE_LONG}).run(bars)
    trade = result.trades[0]
    assert trade.exit_reason == ExitReason.SIGNAL
    assert trade.exit_price == 101.0
    assert result.open_positions == []


def test_open_position_at_final_bar_stays_unrealized():
    bars = _bars([(100, 100.5, 99.5, 100), (100, 101, 99, 100.5)])
    result = _engine({0: SignalAction.LONG}).run(bars)

    assert result.trades == []
    assert len(result.open_positions) == 1
    assert result.open_positions[0].direction == Direction.LONG
    assert result.final_equity == 1000.0
    assert result.equity_curve[-1].has_position
    assert result.equity_curve[-1].position_type == Direction.LONG


def test_one_position_without_pyramiding():
    bars = _bars([(100, 100.5, 99.5, 100)] * 3)
    result = _engine({0: "LONG", 1: "LONG", 2: "LONG"}).run(bars)
    assert len(result.open_positions) == 1
    assert len(result.position_sizes) == 1


def test_entry_skipped_when_sizing_rejects():
    bars = _bars(
        [
            (100, 100.5, 99.5, 100),
            (100, 101, 80, 90),
            (90, 90.5, 89.5, 90),
        ]
    )
    policy = RiskManager(RiskConfig(max_drawdown=0.01), 1000.0)
    result = _engine({0: "LONG", 2: "LONG"}, policy=policy).run(bars)

    assert len(result.trades) == 1
    assert result.open_positions == []
    assert result.position_sizes[-1].reason == "max drawdown reached"
    assert result.position_sizes[-1].recommended_size == 0.0
    assert result.adjustments[-1].action == "stop"


def test_fixed_fraction_policy_reproduces_fixed_sizing():
    bars = _bars([(100, 100.5, 99.5, 100), (100, 111, 99, 110)])
    policy = FixedFractionPolicy(1000.0, 0.1)
    result = _engine({0: "LONG", 1: "CLOSE_LONG"}, policy=policy, leverage=2.0).run(bars)

    trade = result.trades[0]
    assert trade.stop_loss_price is None
    assert trade.exit_reason == ExitReason.SIGNAL
    assert trade.margin == pytest.approx(100.0)
    assert trade.pnl == pytest.approx(20.0 - (200.0 + 220.0) * 0.001)


def test_pyramiding_adds_positions_up_to_limit():
    bars = _bars([(100, 100.5, 99.5, 100)] * 5)
    policy = RiskManager(RiskConfig(pyramiding=True, pyramiding_levels=3), 1000.0)
    result = _engine({i: "LONG" for i in range(5)}, policy=policy).run(bars)

    assert [position.pyramid_level for position in result.open_positions] == [1, 2, 3]
    assert result.position_sizes[3].reason == "max pyramiding levels reached"
    assert result.position_sizes[3].recommended_size == 0.0


def test_recommendation_scales_entry_size():
    bars = _bars([(100, 100.5, 99.5, 100)] * 9)
    signals = {0: "LONG", 1: "CLOSE_LONG", 2: "LONG", 3: "CLOSE_LONG", 4: "LONG", 5: "CLOSE_LONG", 6: "LONG"}
    result = _engine(signals, fee_rate=0.001).run(bars)

    assert len(result.trades) == 3
    assert all(trade.pnl < 0 for trade in result.trades)
    assert result.adjustments[-1].action == "reduce"
    position = result.open_positions[0]
    assert position.margin == pytest.approx(result.position_sizes[-1].recommended_margin * 0.8**3)


def test_take_profit_fallback_from_profit_target():
    bars = _bars([(100, 100.5, 99.5, 100), (100, 110.5, 99.5, 110)])
    result = _engine({0: "LONG"}, profit_target=0.5).run(bars)
    trade = result.trades[0]
    assert trade.take_profit_price == pytest.approx(110.0)
    assert trade.exit_reason == ExitReason.TAKE_PROFIT


def test_atr_stop_after_enough_history():
    rows = [(100, 101, 99, 100)] * 15
    bars = _bars(rows)
    result = _engine({14: "LONG"}).run(bars)
    position = result.open_positions[0]
    assert position.stop_loss_price == pytest.approx(100.0 - 2 * 2.0)


def test_risk_snapshots_sampled_on_interval_and_last_bar():
    bars = _bars([(100, 100.5, 99.5, 100)] * 7)
    result = _engine({}, snapshot_interval=3).run(bars)
    assert [snapshot.time for snapshot in result.risk_snapshots] == [bars[0].timestamp, bars[3].timestamp, bars[6].timestamp]
    assert result.risk_snapshots[0].stats["current_equity"] == 1000.0


def test_signals_wait_for_warmup():
    bars = _bars([(100, 100.5, 99.5, 100)] * 5)
    result = _engine({0: "LONG", 1: "LONG"}, warmup_bars=2).run(bars)
    assert result.position_sizes == []


def test_default_warmup_covers_indicator_history():
    engine = BacktestEngine(SimulationConfig(), BollingerRsiStrategy())
    assert engine.warmup_bars() == 50


def test_unknown_signal_raises():
    bars = _bars([(100, 100.5, 99.5, 100)])
    with pytest.raises(ValueError):
        _engine({0: "BUY_EVERYTHING"}).run(bars)


def test_empty_candles_raise():
    with pytest.raises(MarketDataError):
        _engine({}).run([])


def test_equity_curve_one_point_per_bar():
    bars = _bars([(100, 100.5, 99.5, 100)] * 4)
    result = _engine({}).run(bars)
    assert [point.time for point in result.equity_curve] == [bar.timestamp for bar in bars]
    assert all(point.drawdown == 0.0 for point in result.equity_curve)


def test_replay_is_deterministic():
    bars = []
    price = 100.0
    for i in range(300):
        close = 100.0 + 6.0 * math.sin(i / 7.0) + 2.5 * math.sin(i / 1.7)
        bars.append(
            Candle(START + timedelta(hours=i), price, max(price, close) + 0.4, min(price, close) - 0.4, close)
        )
        price = close

    def run():
        config = SimulationConfig(initial_capital=1000.0, leverage=5.0, profit_target=0.5)
        policy = RiskManager(RiskConfig(use_volatility_adjustment=True, use_anti_martingale=True), 1000.0)
        return BacktestEngine(config, BollingerRsiStrategy(), policy).run(bars)

    first = run()
    second = run()
    assert first.trades == second.trades
    assert first.equity_curve == second.equity_curve
    assert first.metrics == second.metrics
    for trade in first.trades:
        assert trade.exit_reason in set(ExitReason)
    for point in first.equity_curve:
        assert 0.0 <= point.drawdown < 1.0


def test_committed_margin_stays_below_equity():
    bars = _bars([(100, 100.5, 99.5, 100), (100, 101, 70, 75)])
    policy = FixedFractionPolicy(1000.0, 0.99)
    result = _engine({0: "LONG"}, policy=policy).run(bars)

    trade = result.trades[0]
    assert trade.exit_reason == ExitReason.LIQUIDATION
    assert trade.margin == pytest.approx(950.0)
    assert trade.size == pytest.approx(4750.0)
    assert result.final_equity == pytest.approx(50.0)
    assert policy.current_drawdown < 1.0
    assert result.metrics.max_drawdown < 1.0
    assert all(point.drawdown < 1.0 for point in result.equity_curve)


def test_pyramided_margin_is_clamped_to_headroom():
    bars = _bars([(100, 100.5, 99.5, 100)] * 3)
    config = RiskConfig(pyramiding=True, max_risk_per_trade=0.6, max_position_size=0.6)
    result = _engine({i: "LONG" for i in range(3)}, policy=RiskManager(config, 1000.0)).run(bars)

    margins = [position.margin for position in result.open_positions]
    assert margins == pytest.approx([600.0, 300.0, 50.0])
    assert sum(margins) < 1000.0
