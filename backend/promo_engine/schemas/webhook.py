from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from promo_engine.models.promo_code import PaymentStatus


class PaymentWebhookPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    promo_id: int = Field(alias="promoId")
    status: PaymentStatus
    provider: str | None = Field(default=None, max_length=40)
    metadata: dict[str, Any] = Field(default_factory=dict)


class PaymentWebhookResponse(BaseModel):
    received: bool = True
    activated: bool
    already_active: bool = False
    promo_code_id: int
    status: str
    updated: int = 0
    skipped: int = 0
    conflicted: int = 0
