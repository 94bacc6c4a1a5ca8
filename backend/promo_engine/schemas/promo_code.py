from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from promo_engine.models.promo_code import PromoCodeDuration, PromoCodeStatus, PromoCodeType


class PromoCodeCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str = Field(min_length=1, max_length=40)
    type: PromoCodeType
    value: int
    duration: PromoCodeDuration
    start_date: date | None = None
    usage_limit: int | None = Field(default=None, ge=1)
    min_order_amount: int | None = Field(default=None, ge=0)
    manual_price: int | None = Field(default=None, gt=0)


class PromoCodeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    type: PromoCodeType
    value: int
    duration: PromoCodeDuration
    start_date: datetime
    end_date: datetime
    usage_limit: int | None = None
    usage_count: int
    min_order_amount: int | None = None
    owner_id: int
    status: PromoCodeStatus
    is_active: bool
    activation_price: int
    price_overridden: bool
    payment_provider: str | None = None
    activated_at: datetime | None = None
    expired_at: datetime | None = None
    created_at: datetime


class ActivationQuoteRequest(BaseModel):
    type: PromoCodeType
    value: int
    duration: PromoCodeDuration


class ActivationQuoteResponse(BaseModel):
    type: PromoCodeType
    value: int
    duration: PromoCodeDuration
    activation_price: int


class CheckoutValidationRequest(BaseModel):
    code: str = Field(min_length=1, max_length=40)
    cart_total: int = Field(ge=0)


class CheckoutValidationResponse(BaseModel):
    valid: bool
    code: str
    discount: int = 0
    reason: str | None = None
