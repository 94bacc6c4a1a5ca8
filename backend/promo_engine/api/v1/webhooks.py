from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.db.session import get_session
from promo_engine.schemas.webhook import PaymentWebhookPayload, PaymentWebhookResponse
from promo_engine.services import payment_webhooks

router = APIRouter(prefix="/webhooks", tags=["payments"])


@router.post("/payments", response_model=PaymentWebhookResponse)
async def payment_webhook(
    payload: PaymentWebhookPayload,
    session: AsyncSession = Depends(get_session),
) -> PaymentWebhookResponse:
    _, result = await payment_webhooks.handle_payment_notification(
        session,
        promo_id=payload.promo_id,
        status=payload.status,
        provider=payload.provider,
        metadata=payload.metadata,
    )
    if result is None:
        return PaymentWebhookResponse(activated=False, promo_code_id=payload.promo_id, status=payload.status.value)
    return PaymentWebhookResponse(
        activated=True,
        already_active=result.already_active,
        promo_code_id=result.promo_code.id,
        status=result.promo_code.status.value,
        **result.summary.as_dict(),
    )
