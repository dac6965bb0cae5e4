"""Price and quantity arithmetic shared by entry sizing and the TP/repurchase ladder.

Every quantity and price leaving this module is rounded to the symbol's
quantity precision: sizes always round down so the order never exceeds the
margin budget, offset prices round towards the base price so a take-profit
never overshoots and a repurchase never lands above the intended level.
"""
import logging
import math
from decimal import Decimal, InvalidOperation
from typing import Any

from strategy.errors import PrecisionUnresolvable
from strategy.execution_types import Position


logger = logging.getLogger(__name__)

# Scaled values this many ULPs from an integer are multiplication noise
# (0.29 * 100 == 28.999999999999996), not a real fractional part
_SNAP_ULPS = 4


def _snap(scaled: float) -> float:
    nearest = round(scaled)
    if abs(scaled - nearest) <= _SNAP_ULPS * math.ulp(scaled):
        return float(nearest)
    return scaled


def decimal_floor(x: float, precision: int) -> float:
    n = 10 ** precision
    return math.floor(_snap(x * n)) / n


def decimal_ceil(x: float, precision: int) -> float:
    n = 10 ** precision
    return math.ceil(_snap(x * n)) / n


def decimal_round(x: float, precision: int) -> float:
    n = 10 ** precision
    return round(x * n) / n


def quantity_precision(step: Any) -> int:
    """Digits after the decimal point of a quantity step ("0.001" -> 3, "1" -> 0)."""
    if step is None or isinstance(step, bool):
        raise PrecisionUnresolvable("quantity step is missing")
    try:
        value = Decimal(str(step).strip())
    except (InvalidOperation, ValueError) as exc:
        raise PrecisionUnresolvable(f"quantity step {step!r} is not numeric") from exc
    if not value.is_finite() or value <= 0:
        raise PrecisionUnresolvable(f"quantity step {step!r} must be a positive number")
    exponent = value.normalize().as_tuple().exponent
    return max(0, -int(exponent))


def position_size(margin_budget: float, price: float, min_quantity: float, precision: int) -> float:
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")
    quantity = margin_budget / price
    if quantity > min_quantity:
        return decimal_floor(quantity, precision)
    return decimal_floor(min_quantity, precision)


def offset_price(base_price: float, percent_delta: float, precision: int) -> float:
    new_price = base_price * (1 + percent_delta)
    if percent_delta >= 0:
        return decimal_floor(new_price, precision)
    return decimal_ceil(new_price, precision)


def initial_margin(size: float, entry_price: float, leverage: int) -> float:
    return size * entry_price / leverage


def max_margin(balance: float, max_margin_fraction: float, leverage: int) -> float:
    return max_margin_fraction * balance * leverage


def can_repurchase(
    size: float,
    entry_price: float,
    balance: float,
    max_margin_fraction: float,
    leverage: int,
) -> bool:
    """True while the position's initial margin is strictly below the margin cap."""
    return initial_margin(size, entry_price, leverage) < max_margin(balance, max_margin_fraction, leverage)


class MarginRules:
    def __init__(self, initial_margin_fraction: float, max_margin_fraction: float, leverage: int):
        self.initial_margin_fraction = initial_margin_fraction
        self.max_margin_fraction = max_margin_fraction
        self.leverage = leverage

    @classmethod
    def from_settings(cls, settings) -> 'MarginRules':
        return cls(
            settings.initial_margin_fraction,
            settings.max_margin_fraction,
            settings.leverage,
        )

    def entry_budget(self, balance: float) -> float:
        return self.initial_margin_fraction * balance * self.leverage

    def margin_cap(self, balance: float) -> float:
        return max_margin(balance, self.max_margin_fraction, self.leverage)

    def allows_repurchase(self, position: Position, balance: float) -> bool:
        if can_repurchase(position.size, position.entry_price, balance, self.max_margin_fraction, self.leverage):
            return True
        used = initial_margin(position.size, position.entry_price, self.leverage)
        cap = self.margin_cap(balance)
        logger.info(
            "Margin cap reached on %s (initial margin %.4f >= cap %.4f); skipping repurchase",
            position.symbol,
            used,
            cap,
        )
        return False
