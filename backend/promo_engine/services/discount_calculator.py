from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

PRICE_QUANT = Decimal("1")


def round_price(value: Decimal) -> int:
    """Round half-up to whole currency units."""
    return int(Decimal(value).quantize(PRICE_QUANT, rounding=ROUND_HALF_UP))


def _clamp_percentage(percentage: Decimal | int) -> Decimal:
    value = Decimal(percentage)
    if value < 0:
        return Decimal("0")
    if value > 100:
        return Decimal("100")
    return value


@dataclass(frozen=True)
class PercentageDiscount:
    percentage: int


def apply_discount(base_price: int, action: PercentageDiscount | Decimal | int) -> int:
    percentage = action.percentage if isinstance(action, PercentageDiscount) else action
    p = _clamp_percentage(percentage)
    return round_price(Decimal(base_price) * (Decimal("100") - p) / Decimal("100"))


def apply_markup(base_price: int, factor: Decimal) -> int:
    factor = Decimal(factor)
    if factor < 1:
        factor = Decimal("1")
    return round_price(Decimal(base_price) * factor)
