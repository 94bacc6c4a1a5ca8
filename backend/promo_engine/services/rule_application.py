from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core import metrics
from promo_engine.core.errors import (
    InvalidDateRange,
    RuleInactive,
    RuleNotFound,
    RuleNotInWindow,
    ValidationError,
)
from promo_engine.models.promotion import PromotionRule
from promo_engine.services import discount_calculator, price_tagging, rule_matcher
from promo_engine.services.catalog_store import CatalogStore, DiscountRef
from promo_engine.services.price_tagging import ApplySummary

logger = logging.getLogger(__name__)

_RULE_FIELDS = (
    "name",
    "priority",
    "category_id",
    "product_id",
    "reference",
    "is_new",
    "is_best_seller",
    "discount_percentage",
    "start_date",
    "end_date",
    "is_active",
)


def _ensure_utc(dt: datetime | None) -> datetime | None:
    if not dt:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def is_in_window(rule: PromotionRule, now: datetime) -> bool:
    start = _ensure_utc(rule.start_date)
    end = _ensure_utc(rule.end_date)
    if start and now < start:
        return False
    if end and now > end:
        return False
    return True


def _check_dates(start: datetime | None, end: datetime | None) -> None:
    start, end = _ensure_utc(start), _ensure_utc(end)
    if start and end and end <= start:
        raise InvalidDateRange()


async def get_rule(session: AsyncSession, rule_id: int) -> PromotionRule:
    rule = await session.get(PromotionRule, rule_id)
    if rule is None:
        raise RuleNotFound(rule_id=rule_id)
    return rule


async def list_rules(session: AsyncSession) -> list[PromotionRule]:
    result = await session.execute(
        select(PromotionRule).order_by(PromotionRule.priority.desc(), PromotionRule.id.asc())
    )
    return list(result.scalars().all())


async def create_rule(session: AsyncSession, data: dict[str, Any]) -> PromotionRule:
    _check_dates(data.get("start_date"), data.get("end_date"))
    rule = PromotionRule(**{key: value for key, value in data.items() if key in _RULE_FIELDS})
    session.add(rule)
    await session.commit()
    await session.refresh(rule)
    logger.info("promotion_rule_created", extra={"rule_id": rule.id, "rule_name": rule.name})
    return rule


async def update_rule(session: AsyncSession, rule_id: int, changes: dict[str, Any]) -> PromotionRule:
    """Partial update. Prices already applied are left alone until the next apply or revert."""
    rule = await get_rule(session, rule_id)
    for key, value in changes.items():
        if key in _RULE_FIELDS:
            setattr(rule, key, value)
    _check_dates(rule.start_date, rule.end_date)
    session.add(rule)
    await session.commit()
    await session.refresh(rule)
    return rule


async def apply_rule(
    session: AsyncSession,
    rule_id: int,
    *,
    now: datetime | None = None,
    cancel: asyncio.Event | None = None,
    store: CatalogStore | None = None,
) -> ApplySummary:
    rule = await get_rule(session, rule_id)
    now_utc = _ensure_utc(now) or datetime.now(timezone.utc)
    if not rule.is_active:
        raise RuleInactive(rule_id=rule_id)
    if not is_in_window(rule, now_utc):
        raise RuleNotInWindow(rule_id=rule_id)
    conditions = rule_matcher.conditions_for_rule(rule)
    if not conditions:
        raise ValidationError("Promotion rule has no targeting condition", rule_id=rule_id)

    action = discount_calculator.PercentageDiscount(int(rule.discount_percentage))
    ref = DiscountRef.for_rule(rule.id)
    summary = await price_tagging.apply_pricing(
        session,
        ref,
        predicate=lambda target: rule_matcher.matches(conditions, target),
        price_fn=lambda base: discount_calculator.apply_discount(base, action),
        cancel=cancel,
        store=store,
    )
    metrics.record_rule_applied(summary.updated, summary.conflicted)
    logger.info("promotion_rule_applied", extra={"rule_id": ref.id, **summary.as_dict()})
    return summary


async def revert_rule(session: AsyncSession, rule_id: int, *, store: CatalogStore | None = None) -> int:
    rule = await get_rule(session, rule_id)
    reverted = await price_tagging.revert_pricing(session, DiscountRef.for_rule(rule.id), store=store)
    metrics.record_rule_reverted(reverted)
    logger.info("promotion_rule_reverted", extra={"rule_id": rule_id, "reverted": reverted})
    return reverted


async def delete_rule(session: AsyncSession, rule_id: int) -> int:
    """Revert every entity the rule still tags, then delete it."""
    reverted = await revert_rule(session, rule_id)
    rule = await get_rule(session, rule_id)
    await session.delete(rule)
    await session.commit()
    logger.info("promotion_rule_deleted", extra={"rule_id": rule_id, "reverted": reverted})
    return reverted
