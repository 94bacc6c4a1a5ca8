from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.errors import PaymentRejected, PricingError
from promo_engine.models.promo_code import PaymentStatus, PaymentWebhookEvent
from promo_engine.services import promo_codes
from promo_engine.services.promo_codes import ActivationResult, PaymentConfirmation

logger = logging.getLogger(__name__)


def _payload_summary(promo_id: int, status: PaymentStatus, provider: str | None, metadata: dict[str, Any]) -> dict:
    return {"promoId": promo_id, "status": status.value, "provider": provider, "metadata": dict(metadata or {})}


async def _existing_record(session: AsyncSession, *, promo_id: int, status: PaymentStatus) -> PaymentWebhookEvent:
    result = await session.execute(
        select(PaymentWebhookEvent)
        .where(PaymentWebhookEvent.promo_code_id == promo_id, PaymentWebhookEvent.status == status)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def record_event(
    session: AsyncSession,
    *,
    promo_id: int,
    status: PaymentStatus,
    provider: str | None,
    metadata: dict[str, Any],
    now: datetime | None = None,
) -> PaymentWebhookEvent:
    """Store the notification; a redelivery bumps ``attempts`` on the existing row."""
    now = now or datetime.now(timezone.utc)
    summary = _payload_summary(promo_id, status, provider, metadata)
    record = PaymentWebhookEvent(
        promo_code_id=promo_id,
        status=status,
        provider=provider,
        attempts=1,
        last_attempt_at=now,
        payload=summary,
    )
    session.add(record)
    try:
        await session.commit()
        await session.refresh(record)
        return record
    except IntegrityError:
        await session.rollback()

    existing = await _existing_record(session, promo_id=promo_id, status=status)
    existing.attempts = int(existing.attempts or 0) + 1
    existing.last_attempt_at = now
    existing.provider = provider or existing.provider
    existing.payload = summary
    session.add(existing)
    await session.commit()
    await session.refresh(existing)
    return existing


async def _finish(session: AsyncSession, record_id: int, *, error: str | None) -> PaymentWebhookEvent:
    record = await session.get(PaymentWebhookEvent, record_id, populate_existing=True)
    if error is None:
        record.processed_at = datetime.now(timezone.utc)
        record.last_error = None
    else:
        record.last_error = error[:500]
    session.add(record)
    await session.commit()
    return record


async def handle_payment_notification(
    session: AsyncSession,
    *,
    promo_id: int,
    status: PaymentStatus,
    provider: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> tuple[PaymentWebhookEvent, ActivationResult | None]:
    """Record a payment notification and activate the promo code on success.

    A failed payment is recorded and returns ``None`` without touching prices.
    """
    metadata = metadata or {}
    record = await record_event(session, promo_id=promo_id, status=status, provider=provider, metadata=metadata)
    record_id, attempts = record.id, record.attempts
    confirmation = PaymentConfirmation(status=status, provider=provider, metadata=metadata)
    try:
        result = await promo_codes.activate_promo_code(session, promo_id, confirmation)
    except PaymentRejected:
        return await _finish(session, record_id, error=None), None
    except PricingError as exc:
        await session.rollback()
        await _finish(session, record_id, error=f"{exc.code}: {exc.message}")
        logger.warning(
            "payment_webhook_failed", extra={"promo_code_id": promo_id, "error_code": exc.code, "attempts": attempts}
        )
        raise
    return await _finish(session, record_id, error=None), result
