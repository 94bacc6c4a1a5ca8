from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from fastapi import FastAPI
from sqlalchemy import and_, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core import metrics
from promo_engine.core.config import settings
from promo_engine.db.session import SessionLocal
from promo_engine.models.catalog import Product, ProductVariant
from promo_engine.models.promo_code import PromoCode, PromoCodeStatus
from promo_engine.models.promotion import PromotionRule
from promo_engine.services import locks, price_tagging
from promo_engine.services.catalog_store import DiscountRef

logger = logging.getLogger(__name__)

_last_run_monotonic: float | None = None


@dataclass
class ExpiryReport:
    rules_expired: int = 0
    promo_codes_expired: int = 0
    entities_reverted: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _ensure_utc(dt: datetime | None) -> datetime | None:
    if not dt:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _tags_rule(rule_id_column):
    return or_(
        exists().where(Product.applied_rule_id == rule_id_column),
        exists().where(ProductVariant.applied_rule_id == rule_id_column),
    )


async def _expired_rule_ids(session: AsyncSession, now: datetime) -> list[int]:
    result = await session.execute(
        select(PromotionRule.id)
        .where(
            PromotionRule.end_date.is_not(None),
            PromotionRule.end_date < now,
            or_(PromotionRule.is_active.is_(True), _tags_rule(PromotionRule.id)),
        )
        .order_by(PromotionRule.id)
    )
    return [row[0] for row in result.all()]


async def _expired_promo_code_ids(session: AsyncSession, now: datetime) -> list[int]:
    result = await session.execute(
        select(PromoCode.id)
        .where(
            PromoCode.status != PromoCodeStatus.expired,
            or_(
                PromoCode.end_date < now,
                and_(PromoCode.usage_limit.is_not(None), PromoCode.usage_count >= PromoCode.usage_limit),
            ),
        )
        .order_by(PromoCode.id)
    )
    return [row[0] for row in result.all()]


async def _expire_rule(session: AsyncSession, rule_id: int) -> int:
    reverted = await price_tagging.revert_pricing(session, DiscountRef.for_rule(rule_id))
    rule = await session.get(PromotionRule, rule_id, populate_existing=True)
    if rule is not None and rule.is_active:
        rule.is_active = False
        session.add(rule)
        await session.commit()
    logger.info("promotion_rule_expired", extra={"rule_id": rule_id, "reverted": reverted})
    return reverted


async def _expire_promo_code(session: AsyncSession, promo_id: int, now: datetime) -> int:
    reverted = await price_tagging.revert_pricing(session, DiscountRef.for_promo_code(promo_id))
    promo = await session.get(PromoCode, promo_id, populate_existing=True)
    if promo is not None and promo.status != PromoCodeStatus.expired:
        promo.status = PromoCodeStatus.expired
        promo.is_active = False
        promo.expired_at = now
        session.add(promo)
        await session.commit()
    logger.info("promo_code_expired", extra={"promo_code_id": promo_id, "reverted": reverted})
    return reverted


async def run_once(session: AsyncSession, *, now: datetime | None = None) -> ExpiryReport:
    """Revert and deactivate every rule and promo code whose validity has ended."""
    global _last_run_monotonic
    now_utc = _ensure_utc(now) or datetime.now(timezone.utc)
    report = ExpiryReport()

    for rule_id in await _expired_rule_ids(session, now_utc):
        report.entities_reverted += await _expire_rule(session, rule_id)
        report.rules_expired += 1

    for promo_id in await _expired_promo_code_ids(session, now_utc):
        report.entities_reverted += await _expire_promo_code(session, promo_id, now_utc)
        report.promo_codes_expired += 1

    _last_run_monotonic = time.monotonic()
    metrics.record_expiry_pass(report.rules_expired, report.promo_codes_expired, report.entities_reverted)
    if report.rules_expired or report.promo_codes_expired:
        logger.info("expiry_reconciled", extra=report.as_dict())
    return report


async def run_if_stale(session: AsyncSession, *, min_interval_seconds: int | None = None) -> ExpiryReport | None:
    """Reconcile unless a pass ran within ``min_interval_seconds``."""
    interval = settings.reconcile_min_interval_seconds if min_interval_seconds is None else min_interval_seconds
    if _last_run_monotonic is not None and time.monotonic() - _last_run_monotonic < interval:
        return None
    return await run_once(session)


async def _run_scheduled() -> ExpiryReport:
    async with SessionLocal() as session:
        return await run_once(session)


async def _loop(stop: asyncio.Event) -> None:
    interval = max(30, int(settings.expiry_poll_interval_seconds or 300))
    while not stop.is_set():
        try:
            await _run_scheduled()
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.warning("expiry_scheduler_failed", extra={"error": str(exc)})

        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=interval)


def start(app: FastAPI) -> None:
    if not settings.expiry_scheduler_enabled:
        return
    if getattr(app.state, "expiry_scheduler_task", None) is not None:
        return

    stop_event = asyncio.Event()
    task = asyncio.create_task(locks.run_as_leader(name="expiry_reconciler", stop=stop_event, work=_loop))
    app.state.expiry_scheduler_stop = stop_event
    app.state.expiry_scheduler_task = task


async def stop(app: FastAPI) -> None:
    stop_event = getattr(app.state, "expiry_scheduler_stop", None)
    task = getattr(app.state, "expiry_scheduler_task", None)
    if stop_event:
        stop_event.set()
    if task:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    if getattr(app.state, "expiry_scheduler_stop", None) is not None:
        delattr(app.state, "expiry_scheduler_stop")
    if getattr(app.state, "expiry_scheduler_task", None) is not None:
        delattr(app.state, "expiry_scheduler_task")
