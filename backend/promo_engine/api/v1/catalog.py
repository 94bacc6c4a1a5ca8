from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.config import settings
from promo_engine.core.dependencies import Principal, get_optional_principal
from promo_engine.core.errors import EntityNotFound
from promo_engine.db.session import get_session
from promo_engine.models.catalog import Product, ProductVariant
from promo_engine.schemas.catalog import AppliedRef, PricedEntityRead
from promo_engine.services import expiry
from promo_engine.services.catalog_store import ref_from_columns

router = APIRouter(prefix="/catalog", tags=["catalog"])


def _to_read(entity, *, kind: str, price: int | None, admin: bool) -> PricedEntityRead:
    data = PricedEntityRead(
        id=entity.id,
        kind=kind,
        reference=entity.reference,
        price=price,
        is_promotion=bool(entity.is_promotion),
    )
    if not admin:
        return data
    ref = ref_from_columns(entity.applied_rule_id, entity.applied_promo_code_id)
    return data.model_copy(
        update={
            "old_price": entity.old_price,
            "applied_ref": AppliedRef(kind=ref.kind.value, id=ref.id) if ref else None,
        }
    )


async def _reconcile_if_enabled(session: AsyncSession) -> None:
    if settings.reconcile_on_read:
        await expiry.run_if_stale(session)


@router.get("/products/{product_id}", response_model=PricedEntityRead, response_model_exclude_none=True)
async def get_product_price(
    product_id: int,
    session: AsyncSession = Depends(get_session),
    principal: Principal | None = Depends(get_optional_principal),
) -> PricedEntityRead:
    await _reconcile_if_enabled(session)
    product = await session.get(Product, product_id, populate_existing=True)
    if product is None:
        raise EntityNotFound(product_id=product_id)
    return _to_read(product, kind="product", price=product.price, admin=bool(principal and principal.is_admin))


@router.get("/variants/{variant_id}", response_model=PricedEntityRead, response_model_exclude_none=True)
async def get_variant_price(
    variant_id: int,
    session: AsyncSession = Depends(get_session),
    principal: Principal | None = Depends(get_optional_principal),
) -> PricedEntityRead:
    await _reconcile_if_enabled(session)
    variant = await session.get(ProductVariant, variant_id, populate_existing=True)
    if variant is None:
        raise EntityNotFound(variant_id=variant_id)
    price = variant.price if variant.price is not None else variant.product.price
    return _to_read(variant, kind="variant", price=price, admin=bool(principal and principal.is_admin))
