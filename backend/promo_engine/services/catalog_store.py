from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from promo_engine.core.config import settings
from promo_engine.core.errors import StorageTransientError
from promo_engine.models.catalog import Product, ProductVariant
from promo_engine.services.rule_matcher import EntityKey, EntityKind, MatchTarget

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MODELS = {EntityKind.product: Product, EntityKind.variant: ProductVariant}


class DiscountKind(str, enum.Enum):
    rule = "rule"
    promo_code = "promo_code"


@dataclass(frozen=True)
class DiscountRef:
    """The rule or promo code that owns an entity's current price change."""

    kind: DiscountKind
    id: int

    @classmethod
    def for_rule(cls, rule_id: int) -> "DiscountRef":
        return cls(DiscountKind.rule, int(rule_id))

    @classmethod
    def for_promo_code(cls, promo_code_id: int) -> "DiscountRef":
        return cls(DiscountKind.promo_code, int(promo_code_id))

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


def ref_from_columns(applied_rule_id: int | None, applied_promo_code_id: int | None) -> DiscountRef | None:
    if applied_rule_id is not None:
        return DiscountRef.for_rule(applied_rule_id)
    if applied_promo_code_id is not None:
        return DiscountRef.for_promo_code(applied_promo_code_id)
    return None


@dataclass(frozen=True)
class PricingSnapshot:
    key: EntityKey
    price: int | None
    old_price: int | None
    ref: DiscountRef | None


@dataclass(frozen=True)
class PricingUpdate:
    price: int | None
    old_price: int | None
    ref: DiscountRef | None


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, asyncio.TimeoutError):
        return True
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def _product_target(product: Product) -> MatchTarget:
    return MatchTarget(
        key=EntityKey(EntityKind.product, product.id),
        product_id=product.id,
        reference=product.reference,
        category_id=product.category_id,
        is_new=bool(product.is_new),
        is_best_seller=bool(product.is_best_seller),
        owner_id=product.owner_id,
        has_own_price=product.price is not None,
    )


def _variant_target(product: Product, variant: ProductVariant) -> MatchTarget:
    return MatchTarget(
        key=EntityKey(EntityKind.variant, variant.id),
        product_id=product.id,
        reference=variant.reference,
        category_id=product.category_id,
        is_new=bool(product.is_new),
        is_best_seller=bool(product.is_best_seller),
        owner_id=product.owner_id,
        has_own_price=variant.price is not None,
    )


def _eq_or_null(column, value):
    return column.is_(None) if value is None else column == value


class CatalogStore:
    """Catalog access for bulk pricing writes.

    Every call runs under ``storage_timeout_seconds`` and transient storage
    errors are retried with exponential backoff. Writes are compare-and-set
    updates keyed on the tag and prices last observed for the entity.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
    ) -> None:
        self.session = session
        self.timeout = float(timeout if timeout is not None else settings.storage_timeout_seconds)
        self.max_retries = max(0, int(max_retries if max_retries is not None else settings.storage_max_retries))
        self.retry_base_delay = float(
            retry_base_delay if retry_base_delay is not None else settings.storage_retry_base_delay_seconds
        )

    async def run(self, operation_name: str, operation: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(operation(), timeout=self.timeout)
            except (asyncio.TimeoutError, DBAPIError) as exc:
                if not _is_transient(exc):
                    raise
                await self.session.rollback()
                attempt += 1
                if attempt > self.max_retries:
                    logger.error(
                        "storage_retries_exhausted",
                        extra={"operation": operation_name, "attempts": attempt, "error": str(exc) or type(exc).__name__},
                    )
                    raise StorageTransientError(operation=operation_name) from exc
                delay = self.retry_base_delay * (2 ** (attempt - 1))
                logger.warning(
                    "storage_retry",
                    extra={"operation": operation_name, "attempt": attempt, "delay_seconds": delay},
                )
                await asyncio.sleep(delay)

    async def find_matching(
        self, predicate: Callable[[MatchTarget], bool], *, owner_id: int | None = None
    ) -> list[MatchTarget]:
        """Products and their variants that satisfy ``predicate``, in stable id order."""

        async def _load() -> list[Product]:
            stmt = select(Product).options(selectinload(Product.variants)).order_by(Product.id)
            if owner_id is not None:
                stmt = stmt.where(Product.owner_id == owner_id)
            result = await self.session.execute(stmt)
            return list(result.scalars().unique().all())

        products = await self.run("find_matching", _load)
        targets: list[MatchTarget] = []
        for product in products:
            targets.append(_product_target(product))
            targets.extend(_variant_target(product, variant) for variant in product.variants)
        return [target for target in targets if predicate(target)]

    async def list_owned_by(self, owner_id: int) -> list[MatchTarget]:
        return await self.find_matching(lambda _target: True, owner_id=owner_id)

    async def list_tagged_by(self, ref: DiscountRef) -> list[PricingSnapshot]:
        async def _load() -> list[PricingSnapshot]:
            snapshots: list[PricingSnapshot] = []
            for kind, model in _MODELS.items():
                column = model.applied_rule_id if ref.kind == DiscountKind.rule else model.applied_promo_code_id
                rows = await self.session.execute(
                    select(
                        model.id, model.price, model.old_price, model.applied_rule_id, model.applied_promo_code_id
                    )
                    .where(column == ref.id)
                    .order_by(model.id)
                )
                snapshots.extend(_snapshot(kind, row) for row in rows.all())
            return snapshots

        return await self.run("list_tagged_by", _load)

    async def load_pricing(self, keys: Iterable[EntityKey]) -> dict[EntityKey, PricingSnapshot]:
        by_kind: dict[EntityKind, list[int]] = {}
        for key in keys:
            by_kind.setdefault(key.kind, []).append(key.id)
        snapshots: dict[EntityKey, PricingSnapshot] = {}
        for kind, ids in by_kind.items():
            model = _MODELS[kind]
            rows = await self.session.execute(
                select(model.id, model.price, model.old_price, model.applied_rule_id, model.applied_promo_code_id).where(
                    model.id.in_(ids)
                )
            )
            for row in rows.all():
                snapshot = _snapshot(kind, row)
                snapshots[snapshot.key] = snapshot
        return snapshots

    async def compare_and_set_pricing(self, observed: PricingSnapshot, change: PricingUpdate) -> bool:
        """Write ``change`` only if the row still holds the observed prices and tag."""
        model = _MODELS[observed.key.kind]
        observed_rule = observed.ref.id if observed.ref and observed.ref.kind == DiscountKind.rule else None
        observed_code = observed.ref.id if observed.ref and observed.ref.kind == DiscountKind.promo_code else None
        new_rule = change.ref.id if change.ref and change.ref.kind == DiscountKind.rule else None
        new_code = change.ref.id if change.ref and change.ref.kind == DiscountKind.promo_code else None
        stmt = (
            update(model)
            .where(
                model.id == observed.key.id,
                _eq_or_null(model.price, observed.price),
                _eq_or_null(model.old_price, observed.old_price),
                _eq_or_null(model.applied_rule_id, observed_rule),
                _eq_or_null(model.applied_promo_code_id, observed_code),
            )
            .values(
                price=change.price,
                old_price=change.old_price,
                is_promotion=change.old_price is not None,
                applied_rule_id=new_rule,
                applied_promo_code_id=new_code,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def run_chunk(self, operation_name: str, writes: Callable[[], Awaitable[T]]) -> T:
        """Run ``writes`` and commit them as one unit, retrying the whole unit on transient errors."""

        async def _unit() -> T:
            outcome = await writes()
            await self.session.commit()
            return outcome

        return await self.run(operation_name, _unit)


def _snapshot(kind: EntityKind, row) -> PricingSnapshot:
    return PricingSnapshot(
        key=EntityKey(kind, row.id),
        price=row.price,
        old_price=row.old_price,
        ref=ref_from_columns(row.applied_rule_id, row.applied_promo_code_id),
    )


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    size = max(1, int(size))
    return [items[index : index + size] for index in range(0, len(items), size)]
