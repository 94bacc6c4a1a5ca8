import asyncio
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from promo_engine.db.base import Base
from promo_engine.models.catalog import Product, ProductVariant
from promo_engine.models.promo_code import PromoCodeDuration, PromoCodeType
from promo_engine.services import markup, promo_codes

_DURATIONS = [
    PromoCodeDuration.one_week,
    PromoCodeDuration.one_month,
    PromoCodeDuration.three_months,
    PromoCodeDuration.one_year,
]


def test_markup_factor_for_percentage_code() -> None:
    policy = markup.CoverageMarkupPolicy()
    # 1 / (1 - 0.10 * 0.75) = 1.08108..., rounded up
    assert policy.markup_factor(PromoCodeDuration.one_month, PromoCodeType.percentage, 10) == Decimal("1.0811")
    # full coverage: 1 / (1 - 0.20) = 1.25
    assert policy.markup_factor(PromoCodeDuration.one_year, PromoCodeType.percentage, 20) == Decimal("1.2500")


def test_markup_factor_is_monotonic_in_value_and_duration() -> None:
    policy = markup.CoverageMarkupPolicy()
    for type_, values in (
        (PromoCodeType.percentage, range(2, 21)),
        (PromoCodeType.fixed_amount, range(2000, 100001, 7000)),
    ):
        for duration in _DURATIONS:
            factors = [policy.markup_factor(duration, type_, value) for value in values]
            assert factors == sorted(factors)
        for value in values:
            factors = [policy.markup_factor(duration, type_, value) for duration in _DURATIONS]
            assert factors == sorted(factors)
            assert all(factor >= 1 for factor in factors)


def test_fixed_amount_rate_is_capped() -> None:
    policy = markup.CoverageMarkupPolicy(fixed_reference_amount=10000, max_rate=Decimal("0.3"))
    assert policy.rate(PromoCodeType.fixed_amount, 2000) == Decimal("0.2")
    assert policy.rate(PromoCodeType.fixed_amount, 100000) == Decimal("0.3")


def test_activation_price_matches_reference_points_and_floor() -> None:
    policy = markup.ActivationPricePolicy()
    assert policy.price(PromoCodeDuration.one_month, PromoCodeType.percentage, 10) == 25000
    # 20000 * 0.4 * (2/10)^2.5 + 2000 = 2143.1 -> floor applies only below 2000
    assert policy.price(PromoCodeDuration.one_week, PromoCodeType.percentage, 2) == 2143
    assert policy.price(PromoCodeDuration.one_year, PromoCodeType.fixed_amount, 10000) == 375000


def test_activation_price_is_monotonic() -> None:
    policy = markup.ActivationPricePolicy()
    for duration in _DURATIONS:
        prices = [policy.price(duration, PromoCodeType.percentage, value) for value in range(2, 21)]
        assert prices == sorted(prices)
    prices = [policy.price(duration, PromoCodeType.fixed_amount, 50000) for duration in _DURATIONS]
    assert prices == sorted(prices)


def test_explicit_zero_policy_arguments_are_not_replaced_by_defaults() -> None:
    flat = markup.ActivationPricePolicy(percentage_exponent=0.0, fixed_amount_exponent=0.0)
    assert flat.value_factor(PromoCodeType.percentage, 5) == Decimal("1")
    assert flat.value_factor(PromoCodeType.percentage, 20) == Decimal("1")
    assert flat.value_factor(PromoCodeType.fixed_amount, 90000) == Decimal("1")
    # 20000 * 1.0 * 1 + 5000 * 1.0
    assert flat.price(PromoCodeDuration.one_month, PromoCodeType.percentage, 20) == 25000

    free = markup.ActivationPricePolicy(base_price=0, fee_per_duration_unit=0, min_price=0)
    assert free.price(PromoCodeDuration.one_year, PromoCodeType.percentage, 20) == 0

    with pytest.raises(ValueError):
        markup.CoverageMarkupPolicy(fixed_reference_amount=0)


def test_markup_touches_only_owner_catalog_and_reverts_exactly() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

    async def run() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with SessionLocal() as session:
            mine = Product(name="Bag", reference="BAG-1", price=20000, owner_id=5)
            theirs = Product(name="Hat", reference="HAT-1", price=20000, owner_id=6)
            session.add_all([mine, theirs])
            await session.flush()
            session.add(ProductVariant(product_id=mine.id, reference="BAG-1-RED", price=21000))
            await session.commit()

            promo = await promo_codes.create_promo_code(
                session,
                owner_id=5,
                code="BAG20",
                type=PromoCodeType.percentage,
                value=20,
                duration=PromoCodeDuration.one_year,
                start_date=date(2025, 1, 1),
            )
            summary = await markup.apply_markup(session, promo)
            assert summary.as_dict() == {"updated": 2, "skipped": 0, "conflicted": 0}

            rows = (
                await session.execute(
                    select(Product.owner_id, Product.price, Product.old_price, Product.applied_promo_code_id).order_by(
                        Product.id
                    )
                )
            ).all()
            assert [tuple(row) for row in rows] == [(5, 25000, 20000, promo.id), (6, 20000, None, None)]
            variant_price = (await session.execute(select(ProductVariant.price))).scalar_one()
            assert variant_price == 26250

            assert await markup.revert_markup(session, promo.id) == 2
            prices = (await session.execute(select(Product.price).order_by(Product.id))).scalars().all()
            assert prices == [20000, 20000]
            assert (await session.execute(select(ProductVariant.price))).scalar_one() == 21000

    asyncio.run(run())
