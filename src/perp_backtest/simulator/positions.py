"""Leveraged position arithmetic: liquidation, fees and realised PnL."""

from __future__ import annotations

from perp_backtest.simulator.models import Candle, Direction

DEFAULT_MAINTENANCE_MARGIN_RATIO = 0.005


def liquidation_price(
    entry_price: float,
    direction: Direction,
    leverage: float,
    maintenance_margin_ratio: float = DEFAULT_MAINTENANCE_MARGIN_RATIO,
) -> float:
    if leverage <= 0:
        raise ValueError("Leverage must be positive")
    if direction == Direction.LONG:
        return entry_price * (1.0 - 1.0 / leverage + maintenance_margin_ratio)
    return entry_price * (1.0 + 1.0 / leverage - maintenance_margin_ratio)


def is_liquidated(current_price: float, liq_price: float, direction: Direction) -> bool:
    if direction == Direction.LONG:
        return current_price <= liq_price
    return current_price >= liq_price


def adverse_price(candle: Candle, direction: Direction) -> float:
    """Worst intrabar price for a position held in ``direction``."""
    return candle.low if direction == Direction.LONG else candle.high


def trading_fees(entry_price: float, exit_price: float, quantity: float, fee_rate: float) -> float:
    entry_value = quantity * entry_price
    exit_value = quantity * exit_price
    return (entry_value + exit_value) * fee_rate


def compute_pnl(
    entry_price: float,
    exit_price: float,
    direction: Direction,
    quantity: float,
    fee_rate: float,
) -> float:
    """Net PnL of closing ``quantity`` units.

    Leverage is not applied here; it only enters through margin * leverage
    when the position is sized.
    """
    entry_value = quantity * entry_price
    exit_value = quantity * exit_price
    gross = direction.sign * (exit_value - entry_value)
    return gross - trading_fees(entry_price, exit_price, quantity, fee_rate)


def liquidation_loss(margin: float) -> float:
    return -abs(margin)


def stop_touched(candle: Candle, stop_price: float, direction: Direction) -> bool:
    if direction == Direction.LONG:
        return candle.low <= stop_price
    return candle.high >= stop_price


def target_touched(candle: Candle, target_price: float, direction: Direction) -> bool:
    if direction == Direction.LONG:
        return candle.high >= target_price
    return candle.low <= target_price


def profit_target_price(
    entry_price: float,
    direction: Direction,
    profit_target: float,
    leverage: float,
) -> float:
    move = profit_target / leverage
    if direction == Direction.LONG:
        return entry_price * (1.0 + move)
    return entry_price * (1.0 - move)
