import json
from datetime import datetime, timedelta, timezone

import pytest

from perp_backtest.simulator import Candle, SignalAction
from perp_backtest.strategy import (
    BollingerRsiParams,
    BollingerRsiStrategy,
    IndicatorSeries,
    apply_tuned_parameters,
    average_true_range,
    build_strategy,
    load_tuned_parameters,
)

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _bars(closes, spread=0.5):
    return [
        Candle(START + timedelta(hours=i), close, close + spread, close - spread, close)
        for i, close in enumerate(closes)
    ]


def test_indicators_on_flat_series():
    series = IndicatorSeries(_bars([100.0] * 30))
    assert series.sma(20) == pytest.approx(100.0)
    assert series.stddev(20) == pytest.approx(0.0)
    assert series.rsi(14) == 50.0
    assert series.sma(31) is None


def test_average_true_range_needs_period_plus_one():
    bars = _bars([100.0] * 15, spread=1.0)
    assert average_true_range(bars[:14], 14) is None
    assert average_true_range(bars, 14) == pytest.approx(2.0)


def test_bb_rsi_is_neutral_without_history():
    strategy = BollingerRsiStrategy()
    assert strategy.evaluate(_bars([100.0] * 10)).action == SignalAction.NONE
    assert strategy.required_history == 20


def test_bb_rsi_long_on_oversold_range_break():
    closes = [100.0 if i % 2 == 0 else 101.0 for i in range(39)] + [85.0]
    signal = BollingerRsiStrategy().evaluate(_bars(closes))
    assert signal.action == SignalAction.LONG
    assert signal.take_profit is not None
    assert signal.take_profit > 85.0


def test_bb_rsi_short_on_overbought_range_break():
    closes = [100.0 if i % 2 == 0 else 101.0 for i in range(39)] + [116.0]
    signal = BollingerRsiStrategy().evaluate(_bars(closes))
    assert signal.action == SignalAction.SHORT
    assert signal.take_profit < 116.0


def test_bb_rsi_closes_longs_in_strong_uptrend():
    signal = BollingerRsiStrategy().evaluate(_bars([100.0 + i for i in range(40)]))
    assert signal.action == SignalAction.CLOSE_LONG


def test_tuned_parameters_overlay(tmp_path):
    path = tmp_path / "tuned.json"
    path.write_text(
        json.dumps({"bbPeriod": 30, "rsiOversold": 25, "adxThreshold": 20.5, "unknownKnob": 3, "label": "x"}),
        encoding="utf-8",
    )
    strategy = apply_tuned_parameters(BollingerRsiStrategy(), load_tuned_parameters(path))
    assert strategy.params.bollinger_window == 30
    assert isinstance(strategy.params.bollinger_window, int)
    assert strategy.params.rsi_oversold == 25.0
    assert strategy.params.adx_threshold == 20.5
    assert strategy.params.rsi_period == 14


def test_missing_tuned_file_keeps_defaults(tmp_path):
    assert load_tuned_parameters(tmp_path / "absent.json") == {}
    strategy = build_strategy("bb_rsi", {"rsi_period": 7}, tmp_path / "absent.json")
    assert strategy.params == BollingerRsiParams(rsi_period=7)


def test_unknown_strategy_name():
    with pytest.raises(ValueError):
        build_strategy("martingale_wizard")
