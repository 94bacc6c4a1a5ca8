from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core import metrics
from promo_engine.core.config import settings
from promo_engine.core.errors import (
    DuplicateCode,
    InvalidCodeFormat,
    OutOfRange,
    PaymentRejected,
    PromoCodeNotFound,
    StateConflictError,
    ValidationError,
)
from promo_engine.models.promo_code import (
    PaymentStatus,
    PromoCode,
    PromoCodeDuration,
    PromoCodeStatus,
    PromoCodeType,
)
from promo_engine.services import discount_calculator, markup
from promo_engine.services.price_tagging import ApplySummary

logger = logging.getLogger(__name__)

_CODE_PATTERN = re.compile(r"[A-Z0-9]+")

_DURATION_DELTAS: dict[PromoCodeDuration, relativedelta] = {
    PromoCodeDuration.one_week: relativedelta(days=7),
    PromoCodeDuration.one_month: relativedelta(months=1),
    PromoCodeDuration.three_months: relativedelta(months=3),
    PromoCodeDuration.one_year: relativedelta(months=12),
}


@dataclass(frozen=True)
class PaymentConfirmation:
    status: PaymentStatus
    provider: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ActivationResult:
    promo_code: PromoCode
    already_active: bool
    summary: ApplySummary


@dataclass(frozen=True)
class CheckoutValidation:
    valid: bool
    code: str
    discount: int = 0
    reason: str | None = None
    promo_code_id: int | None = None


def _ensure_utc(dt: datetime | None) -> datetime | None:
    if not dt:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def normalize_code(raw: str) -> str:
    code = (raw or "").strip().upper()
    if not _CODE_PATTERN.fullmatch(code):
        raise InvalidCodeFormat(code=raw)
    if not settings.promo_code_min_length <= len(code) <= settings.promo_code_max_length:
        raise InvalidCodeFormat(code=raw)
    return code


def validate_value(type: PromoCodeType, value: int) -> None:
    if type == PromoCodeType.percentage:
        low, high = settings.promo_percentage_min, settings.promo_percentage_max
        message = f"Percentage must be between {low}% and {high}%"
    else:
        low, high = settings.promo_fixed_amount_min, settings.promo_fixed_amount_max
        message = f"Fixed amount must be between {low} and {high}"
    if not low <= int(value) <= high:
        raise OutOfRange(message, type=type.value, value=value)


def compute_end_date(start: date, duration: PromoCodeDuration) -> date:
    """Calendar arithmetic; month ends clamp (Jan 31 + 1 month is Feb 28 or 29)."""
    return start + _DURATION_DELTAS[PromoCodeDuration(duration)]


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def quote_activation_price(
    type: PromoCodeType,
    value: int,
    duration: PromoCodeDuration,
    *,
    price_policy: markup.ActivationPricePolicy | None = None,
) -> int:
    validate_value(type, value)
    policy = price_policy or markup.ActivationPricePolicy()
    return policy.price(duration, type, value)


async def _code_exists(session: AsyncSession, code: str) -> bool:
    result = await session.execute(select(PromoCode.id).where(func.upper(PromoCode.code) == code.upper()))
    return result.first() is not None


async def create_promo_code(
    session: AsyncSession,
    *,
    owner_id: int,
    code: str,
    type: PromoCodeType,
    value: int,
    duration: PromoCodeDuration,
    start_date: date | None = None,
    usage_limit: int | None = None,
    min_order_amount: int | None = None,
    manual_price: int | None = None,
    price_policy: markup.ActivationPricePolicy | None = None,
) -> PromoCode:
    normalized = normalize_code(code)
    type = PromoCodeType(type)
    duration = PromoCodeDuration(duration)
    validate_value(type, value)
    if usage_limit is not None and usage_limit < 1:
        raise ValidationError("Usage limit must be at least 1", usage_limit=usage_limit)
    if min_order_amount is not None and min_order_amount < 0:
        raise ValidationError("Minimum order amount cannot be negative", min_order_amount=min_order_amount)
    if manual_price is not None and manual_price <= 0:
        raise ValidationError("Manual activation price must be a positive amount", manual_price=manual_price)
    if await _code_exists(session, normalized):
        raise DuplicateCode(code=normalized)

    start = start_date or datetime.now(timezone.utc).date()
    end = compute_end_date(start, duration)
    computed_price = quote_activation_price(type, value, duration, price_policy=price_policy)
    if manual_price is not None and manual_price != computed_price:
        logger.warning(
            "promo_code_manual_price_override",
            extra={"code": normalized, "computed_price": computed_price, "manual_price": manual_price},
        )

    promo = PromoCode(
        code=normalized,
        type=type,
        value=int(value),
        duration=duration,
        start_date=_start_of_day(start),
        end_date=_start_of_day(end),
        usage_limit=usage_limit,
        usage_count=0,
        min_order_amount=min_order_amount,
        owner_id=owner_id,
        status=PromoCodeStatus.pending,
        is_active=False,
        activation_price=manual_price if manual_price is not None else computed_price,
        price_overridden=manual_price is not None,
    )
    session.add(promo)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise DuplicateCode(code=normalized) from exc
    await session.refresh(promo)
    metrics.record_promo_code_created()
    logger.info(
        "promo_code_created",
        extra={"promo_code_id": promo.id, "owner_id": owner_id, "code": normalized, "activation_price": promo.activation_price},
    )
    return promo


async def get_promo_code(session: AsyncSession, promo_id: int) -> PromoCode:
    promo = await session.get(PromoCode, promo_id)
    if promo is None:
        raise PromoCodeNotFound(promo_code_id=promo_id)
    return promo


async def list_for_owner(session: AsyncSession, owner_id: int) -> list[PromoCode]:
    result = await session.execute(
        select(PromoCode).where(PromoCode.owner_id == owner_id).order_by(PromoCode.created_at.desc(), PromoCode.id.desc())
    )
    return list(result.scalars().all())


async def delete_pending(session: AsyncSession, promo_id: int, owner_id: int) -> None:
    promo = await get_promo_code(session, promo_id)
    if promo.owner_id != owner_id:
        raise PromoCodeNotFound(promo_code_id=promo_id)
    if promo.status != PromoCodeStatus.pending:
        raise StateConflictError("Only pending promo codes can be deleted", promo_code_id=promo_id)
    await session.delete(promo)
    await session.commit()
    logger.info("promo_code_deleted", extra={"promo_code_id": promo_id, "owner_id": owner_id})


async def activate_promo_code(
    session: AsyncSession,
    promo_id: int,
    confirmation: PaymentConfirmation,
    *,
    policy: markup.MarkupPolicy | None = None,
    now: datetime | None = None,
) -> ActivationResult:
    """Activate a promo code once its payment is confirmed.

    The owner's catalog is marked up before the status flips to ACTIVE, so a
    redelivered confirmation after a partial failure finishes the job. A code
    whose end date has already passed is expired instead and no price is
    touched.
    """
    now_utc = _ensure_utc(now) or datetime.now(timezone.utc)
    promo = await get_promo_code(session, promo_id)
    if confirmation.status != PaymentStatus.success:
        metrics.record_payment_rejected()
        logger.info(
            "promo_code_payment_rejected",
            extra={"promo_code_id": promo_id, "provider": confirmation.provider, "promo_status": promo.status.value},
        )
        raise PaymentRejected(promo_code_id=promo_id)
    if promo.status == PromoCodeStatus.active:
        return ActivationResult(promo_code=promo, already_active=True, summary=ApplySummary())
    if promo.status == PromoCodeStatus.expired:
        raise StateConflictError("Promo code has expired", promo_code_id=promo_id)
    if now_utc > _ensure_utc(promo.end_date):
        await _expire_unactivated(session, promo, now_utc)
        raise StateConflictError("Promo code has expired", promo_code_id=promo_id)

    summary = await markup.apply_markup(session, promo, policy=policy)
    # Only one confirmation may flip PENDING to ACTIVE; a concurrent one
    # finds its markup already done and reports the code as already active.
    flipped = await session.execute(
        update(PromoCode)
        .where(PromoCode.id == promo_id, PromoCode.status == PromoCodeStatus.pending)
        .values(
            status=PromoCodeStatus.active,
            is_active=True,
            activated_at=now_utc,
            payment_provider=confirmation.provider,
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    promo = await session.get(PromoCode, promo_id, populate_existing=True)
    if flipped.rowcount != 1:
        return ActivationResult(promo_code=promo, already_active=True, summary=summary)

    metrics.record_promo_code_activated(summary.updated)
    logger.info(
        "promo_code_activated",
        extra={"promo_code_id": promo.id, "provider": confirmation.provider, **summary.as_dict()},
    )
    return ActivationResult(promo_code=promo, already_active=False, summary=summary)


async def _expire_unactivated(session: AsyncSession, promo: PromoCode, now: datetime) -> None:
    promo.status = PromoCodeStatus.expired
    promo.is_active = False
    promo.expired_at = now
    session.add(promo)
    await session.commit()
    logger.info("promo_code_expired_before_activation", extra={"promo_code_id": promo.id})


def _rejection_reason(promo: PromoCode | None, now: datetime) -> str | None:
    if promo is None:
        return "not_found"
    if promo.status != PromoCodeStatus.active or not promo.is_active:
        return "inactive"
    if now < _ensure_utc(promo.start_date):
        return "not_started"
    if now > _ensure_utc(promo.end_date):
        return "expired"
    if promo.usage_limit is not None and promo.usage_count >= promo.usage_limit:
        return "usage_limit_reached"
    return None


def discount_for(promo: PromoCode, cart_total: int) -> int:
    if promo.type == PromoCodeType.percentage:
        return discount_calculator.round_price(Decimal(cart_total) * Decimal(promo.value) / Decimal("100"))
    return min(int(promo.value), int(cart_total))


async def _find_by_code(session: AsyncSession, code: str) -> PromoCode | None:
    normalized = (code or "").strip().upper()
    if not normalized:
        return None
    result = await session.execute(select(PromoCode).where(PromoCode.code == normalized))
    return result.scalar_one_or_none()


async def validate_for_checkout(
    session: AsyncSession, code: str, cart_total: int, *, now: datetime | None = None
) -> CheckoutValidation:
    now_utc = _ensure_utc(now) or datetime.now(timezone.utc)
    promo = await _find_by_code(session, code)
    reason = _rejection_reason(promo, now_utc)
    if reason is None and promo.min_order_amount is not None and cart_total < promo.min_order_amount:
        reason = "min_order_not_met"
    if reason is not None:
        return CheckoutValidation(
            valid=False, code=(promo.code if promo else code), reason=reason, promo_code_id=promo.id if promo else None
        )
    return CheckoutValidation(
        valid=True, code=promo.code, discount=discount_for(promo, cart_total), promo_code_id=promo.id
    )


async def record_usage(session: AsyncSession, code: str, *, now: datetime | None = None) -> PromoCode:
    """Count one redemption. A code that reaches its limit is expired by the reconciler."""
    now_utc = _ensure_utc(now) or datetime.now(timezone.utc)
    promo = await _find_by_code(session, code)
    reason = _rejection_reason(promo, now_utc)
    if promo is None:
        raise PromoCodeNotFound(code=code)
    if reason is not None:
        raise StateConflictError("Promo code cannot be used", code=promo.code, reason=reason)
    result = await session.execute(
        update(PromoCode)
        .where(
            PromoCode.id == promo.id,
            or_(PromoCode.usage_limit.is_(None), PromoCode.usage_count < PromoCode.usage_limit),
        )
        .values(usage_count=PromoCode.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise StateConflictError("Promo code cannot be used", code=promo.code, reason="usage_limit_reached")
    await session.commit()
    await session.refresh(promo)
    logger.info("promo_code_used", extra={"promo_code_id": promo.id, "usage_count": promo.usage_count})
    return promo
