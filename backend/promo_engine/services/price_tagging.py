from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.config import settings
from promo_engine.core.errors import BatchAborted
from promo_engine.core.logging_config import pricing_context
from promo_engine.services.catalog_store import (
    CatalogStore,
    DiscountRef,
    PricingSnapshot,
    PricingUpdate,
    chunked,
)
from promo_engine.services.locks import target_lock
from promo_engine.services.rule_matcher import EntityKey, MatchTarget

logger = logging.getLogger(__name__)

PriceFn = Callable[[int], int]


@dataclass
class ApplySummary:
    updated: int = 0
    skipped: int = 0
    conflicted: int = 0

    def add(self, other: "ApplySummary") -> None:
        self.updated += other.updated
        self.skipped += other.skipped
        self.conflicted += other.conflicted

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _store_for(session: AsyncSession, store: CatalogStore | None) -> CatalogStore:
    return store if store is not None else CatalogStore(session)


def _tagged_update(snapshot: PricingSnapshot, ref: DiscountRef, price_fn: PriceFn) -> PricingUpdate | None:
    """New pricing for an entity that is untagged or already tagged by ``ref``.

    The base is always the stored pre-discount price when there is one, so
    re-applying recomputes instead of compounding.
    """
    base = snapshot.old_price if snapshot.old_price is not None else snapshot.price
    new_price = price_fn(int(base))
    if snapshot.ref == ref and new_price == snapshot.price and snapshot.old_price == base:
        return None
    return PricingUpdate(price=new_price, old_price=base, ref=ref)


async def _apply_chunk(
    store: CatalogStore, keys: Sequence[EntityKey], ref: DiscountRef, price_fn: PriceFn
) -> ApplySummary:
    summary = ApplySummary()
    snapshots = await store.load_pricing(keys)
    for key in keys:
        snapshot = snapshots.get(key)
        if snapshot is None or snapshot.price is None:
            summary.skipped += 1
            continue
        if snapshot.ref is not None and snapshot.ref != ref:
            summary.conflicted += 1
            continue
        change = _tagged_update(snapshot, ref, price_fn)
        if change is None:
            summary.skipped += 1
            continue
        if await store.compare_and_set_pricing(snapshot, change):
            summary.updated += 1
        else:
            summary.conflicted += 1
    return summary


async def apply_pricing(
    session: AsyncSession,
    ref: DiscountRef,
    *,
    predicate: Callable[[MatchTarget], bool],
    price_fn: PriceFn,
    owner_id: int | None = None,
    cancel: asyncio.Event | None = None,
    store: CatalogStore | None = None,
    chunk_size: int | None = None,
) -> ApplySummary:
    """Tag every matching entity with ``ref`` and price it with ``price_fn``.

    Entities tagged by another rule or promo code are left untouched and
    counted as conflicted. Chunks are committed one by one; ``cancel`` is
    checked before each chunk and aborts with the partial summary.
    """
    store = _store_for(session, store)
    size = chunk_size or settings.catalog_chunk_size
    summary = ApplySummary()
    with pricing_context(ref):
        async with target_lock(ref, bind=session.bind):
            targets = await store.find_matching(predicate, owner_id=owner_id)
            priced: list[EntityKey] = []
            for target in targets:
                if target.has_own_price:
                    priced.append(target.key)
                else:
                    summary.skipped += 1
            for chunk in chunked(priced, size):
                if cancel is not None and cancel.is_set():
                    logger.warning("pricing_batch_aborted", extra=summary.as_dict())
                    raise BatchAborted(summary)
                outcome = await store.run_chunk(
                    "apply_pricing_chunk", lambda chunk=chunk: _apply_chunk(store, chunk, ref, price_fn)
                )
                summary.add(outcome)
    return summary


async def _revert_chunk(store: CatalogStore, keys: Sequence[EntityKey], ref: DiscountRef) -> int:
    reverted = 0
    snapshots = await store.load_pricing(keys)
    for key in keys:
        snapshot = snapshots.get(key)
        if snapshot is None or snapshot.ref != ref:
            continue
        restored = snapshot.old_price if snapshot.old_price is not None else snapshot.price
        if await store.compare_and_set_pricing(snapshot, PricingUpdate(price=restored, old_price=None, ref=None)):
            reverted += 1
    return reverted


async def revert_pricing(
    session: AsyncSession,
    ref: DiscountRef,
    *,
    store: CatalogStore | None = None,
    chunk_size: int | None = None,
) -> int:
    """Restore the pre-discount price of every entity tagged by ``ref`` and clear the tag."""
    store = _store_for(session, store)
    size = chunk_size or settings.catalog_chunk_size
    reverted = 0
    with pricing_context(ref):
        async with target_lock(ref, bind=session.bind):
            tagged = await store.list_tagged_by(ref)
            for chunk in chunked([snapshot.key for snapshot in tagged], size):
                reverted += await store.run_chunk(
                    "revert_pricing_chunk", lambda chunk=chunk: _revert_chunk(store, chunk, ref)
                )
    return reverted
