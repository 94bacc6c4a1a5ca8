from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.dependencies import Principal, get_current_principal
from promo_engine.db.session import get_session
from promo_engine.schemas.promo_code import (
    ActivationQuoteRequest,
    ActivationQuoteResponse,
    CheckoutValidationRequest,
    CheckoutValidationResponse,
    PromoCodeCreate,
    PromoCodeRead,
)
from promo_engine.services import promo_codes as promo_codes_service

router = APIRouter(tags=["promo-codes"])


@router.post("/admin/marketing/promo-codes", response_model=PromoCodeRead, status_code=status.HTTP_201_CREATED)
async def create_promo_code(
    payload: PromoCodeCreate,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> PromoCodeRead:
    promo = await promo_codes_service.create_promo_code(
        session,
        owner_id=principal.user_id,
        code=payload.code,
        type=payload.type,
        value=payload.value,
        duration=payload.duration,
        start_date=payload.start_date,
        usage_limit=payload.usage_limit,
        min_order_amount=payload.min_order_amount,
        manual_price=payload.manual_price,
    )
    return PromoCodeRead.model_validate(promo)


@router.get("/admin/marketing/promo-codes", response_model=list[PromoCodeRead])
async def list_my_promo_codes(
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> list[PromoCodeRead]:
    promos = await promo_codes_service.list_for_owner(session, principal.user_id)
    return [PromoCodeRead.model_validate(promo) for promo in promos]


@router.delete("/admin/marketing/promo-codes/{promo_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_pending_promo_code(
    promo_id: int,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> Response:
    await promo_codes_service.delete_pending(session, promo_id, principal.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/admin/marketing/promo-codes/quote", response_model=ActivationQuoteResponse)
async def quote_promo_code(
    payload: ActivationQuoteRequest,
    _: Principal = Depends(get_current_principal),
) -> ActivationQuoteResponse:
    price = promo_codes_service.quote_activation_price(payload.type, payload.value, payload.duration)
    return ActivationQuoteResponse(
        type=payload.type, value=payload.value, duration=payload.duration, activation_price=price
    )


@router.post("/promo-codes/validate", response_model=CheckoutValidationResponse)
async def validate_promo_code(
    payload: CheckoutValidationRequest,
    session: AsyncSession = Depends(get_session),
) -> CheckoutValidationResponse:
    result = await promo_codes_service.validate_for_checkout(session, payload.code, payload.cart_total)
    return CheckoutValidationResponse(
        valid=result.valid, code=result.code, discount=result.discount, reason=result.reason
    )
