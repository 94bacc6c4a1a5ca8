from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from decimal import Decimal, ROUND_UP
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.config import settings
from promo_engine.models.promo_code import PromoCode, PromoCodeDuration, PromoCodeType
from promo_engine.services import discount_calculator, price_tagging
from promo_engine.services.catalog_store import CatalogStore, DiscountRef
from promo_engine.services.price_tagging import ApplySummary

logger = logging.getLogger(__name__)

FACTOR_QUANT = Decimal("0.0001")


class MarkupPolicy(Protocol):
    def markup_factor(self, duration: PromoCodeDuration, type: PromoCodeType, value: int) -> Decimal: ...


def _duration_settings(prefix: str) -> dict[PromoCodeDuration, Decimal]:
    return {
        PromoCodeDuration.one_week: Decimal(str(getattr(settings, f"{prefix}_1_week"))),
        PromoCodeDuration.one_month: Decimal(str(getattr(settings, f"{prefix}_1_month"))),
        PromoCodeDuration.three_months: Decimal(str(getattr(settings, f"{prefix}_3_months"))),
        PromoCodeDuration.one_year: Decimal(str(getattr(settings, f"{prefix}_1_year"))),
    }


class CoverageMarkupPolicy:
    """Raise catalog prices so that a share of the coupon's discount is pre-funded.

    ``rate`` is the discount the coupon grants as a fraction of the price and
    ``coverage`` how much of it a given duration must pre-fund. The resulting
    factor ``1 / (1 - rate * coverage)`` means a price marked up and then
    discounted by ``rate`` lands back near the base price when coverage is full.
    """

    def __init__(
        self,
        *,
        coverage: Mapping[PromoCodeDuration, Decimal] | None = None,
        fixed_reference_amount: int | None = None,
        max_rate: Decimal | None = None,
    ) -> None:
        self.coverage = dict(coverage) if coverage is not None else _duration_settings("markup_coverage")
        self.fixed_reference_amount = int(
            fixed_reference_amount if fixed_reference_amount is not None else settings.markup_fixed_reference_amount
        )
        if self.fixed_reference_amount <= 0:
            raise ValueError("fixed_reference_amount must be positive")
        self.max_rate = Decimal(str(max_rate if max_rate is not None else settings.markup_max_rate))

    def rate(self, type: PromoCodeType, value: int) -> Decimal:
        if type == PromoCodeType.percentage:
            rate = Decimal(value) / Decimal("100")
        else:
            rate = min(Decimal(value) / Decimal(self.fixed_reference_amount), self.max_rate)
        return max(Decimal("0"), min(rate, Decimal("1")))

    def markup_factor(self, duration: PromoCodeDuration, type: PromoCodeType, value: int) -> Decimal:
        denominator = Decimal("1") - self.rate(type, value) * self.coverage[duration]
        if denominator <= 0:
            raise ValueError("Markup coverage leaves no price to discount")
        return (Decimal("1") / denominator).quantize(FACTOR_QUANT, rounding=ROUND_UP)


class ActivationPricePolicy:
    """Price an owner pays to activate a promo code, growing with duration and value."""

    def __init__(
        self,
        *,
        base_price: int | None = None,
        fee_per_duration_unit: int | None = None,
        min_price: int | None = None,
        duration_factors: Mapping[PromoCodeDuration, Decimal] | None = None,
        percentage_exponent: float | None = None,
        fixed_amount_exponent: float | None = None,
    ) -> None:
        self.base_price = int(base_price if base_price is not None else settings.activation_base_price)
        self.fee_per_duration_unit = int(
            fee_per_duration_unit if fee_per_duration_unit is not None else settings.activation_fee_per_duration_unit
        )
        self.min_price = int(min_price if min_price is not None else settings.activation_min_price)
        self.duration_factors = (
            dict(duration_factors) if duration_factors is not None else _duration_settings("activation_duration_factor")
        )
        self.percentage_exponent = float(
            percentage_exponent if percentage_exponent is not None else settings.activation_percentage_exponent
        )
        self.fixed_amount_exponent = float(
            fixed_amount_exponent if fixed_amount_exponent is not None else settings.activation_fixed_amount_exponent
        )

    def value_factor(self, type: PromoCodeType, value: int) -> Decimal:
        if type == PromoCodeType.percentage:
            return Decimal(str((value / 10) ** self.percentage_exponent))
        return Decimal(str((value / 10000) ** self.fixed_amount_exponent))

    def price(self, duration: PromoCodeDuration, type: PromoCodeType, value: int) -> int:
        duration_factor = self.duration_factors[duration]
        raw = Decimal(self.base_price) * duration_factor * self.value_factor(type, value)
        fee = Decimal(self.fee_per_duration_unit) * duration_factor
        return max(self.min_price, discount_calculator.round_price(raw + fee))


async def apply_markup(
    session: AsyncSession,
    promo_code: PromoCode,
    *,
    policy: MarkupPolicy | None = None,
    cancel: asyncio.Event | None = None,
    store: CatalogStore | None = None,
) -> ApplySummary:
    """Mark up every product and variant the promo code's owner sells."""
    policy = policy or CoverageMarkupPolicy()
    factor = policy.markup_factor(promo_code.duration, promo_code.type, promo_code.value)
    ref = DiscountRef.for_promo_code(promo_code.id)
    owner_id = promo_code.owner_id
    summary = await price_tagging.apply_pricing(
        session,
        ref,
        predicate=lambda target: target.owner_id == owner_id,
        price_fn=lambda base: discount_calculator.apply_markup(base, factor),
        owner_id=owner_id,
        cancel=cancel,
        store=store,
    )
    logger.info(
        "promo_code_markup_applied",
        extra={"promo_code_id": ref.id, "owner_id": owner_id, "factor": str(factor), **summary.as_dict()},
    )
    return summary


async def revert_markup(session: AsyncSession, promo_code_id: int, *, store: CatalogStore | None = None) -> int:
    return await price_tagging.revert_pricing(session, DiscountRef.for_promo_code(promo_code_id), store=store)
