from datetime import datetime, timezone

import pytest

from perp_backtest.simulator import Candle, Direction
from perp_backtest.simulator.positions import (
    adverse_price,
    compute_pnl,
    is_liquidated,
    liquidation_loss,
    liquidation_price,
    profit_target_price,
    stop_touched,
    target_touched,
    trading_fees,
)


def _candle(high, low, close=100.0):
    return Candle(
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        open=100.0,
        high=high,
        low=low,
        close=close,
    )


def test_liquidation_price_long_and_short():
    assert liquidation_price(100.0, Direction.LONG, 5.0) == pytest.approx(80.5)
    assert liquidation_price(100.0, Direction.SHORT, 5.0) == pytest.approx(119.5)
    assert liquidation_price(100.0, Direction.LONG, 10.0, 0.01) == pytest.approx(91.0)


def test_liquidation_price_rejects_non_positive_leverage():
    with pytest.raises(ValueError):
        liquidation_price(100.0, Direction.LONG, 0.0)


def test_is_liquidated_is_inclusive_at_threshold():
    assert is_liquidated(80.5, 80.5, Direction.LONG)
    assert not is_liquidated(80.6, 80.5, Direction.LONG)
    assert is_liquidated(119.5, 119.5, Direction.SHORT)
    assert not is_liquidated(119.4, 119.5, Direction.SHORT)


def test_adverse_price_uses_bar_extreme_against_position():
    candle = _candle(high=105.0, low=95.0)
    assert adverse_price(candle, Direction.LONG) == 95.0
    assert adverse_price(candle, Direction.SHORT) == 105.0


def test_pnl_charges_fees_on_entry_and_exit_value():
    assert trading_fees(100.0, 110.0, 1.0, 0.001) == pytest.approx(0.21)
    assert compute_pnl(100.0, 110.0, Direction.LONG, 1.0, 0.001) == pytest.approx(9.79)
    assert compute_pnl(100.0, 90.0, Direction.SHORT, 2.0, 0.0) == pytest.approx(20.0)
    assert compute_pnl(100.0, 110.0, Direction.SHORT, 1.0, 0.001) == pytest.approx(-10.21)


def test_liquidation_loss_is_full_margin():
    assert liquidation_loss(20.0) == -20.0


def test_stop_and_target_touch_intrabar():
    candle = _candle(high=111.0, low=97.0)
    assert stop_touched(candle, 97.5, Direction.LONG)
    assert not stop_touched(candle, 96.0, Direction.LONG)
    assert target_touched(candle, 110.0, Direction.LONG)
    assert stop_touched(candle, 110.0, Direction.SHORT)
    assert target_touched(candle, 97.0, Direction.SHORT)
    assert not target_touched(candle, 96.9, Direction.SHORT)


def test_profit_target_price_scales_with_leverage():
    assert profit_target_price(100.0, Direction.LONG, 0.5, 5.0) == pytest.approx(110.0)
    assert profit_target_price(100.0, Direction.SHORT, 0.5, 5.0) == pytest.approx(90.0)
