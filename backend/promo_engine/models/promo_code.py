import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Integer, JSON, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from promo_engine.db.base import Base


class PromoCodeType(str, enum.Enum):
    percentage = "PERCENTAGE"
    fixed_amount = "FIXED_AMOUNT"


class PromoCodeDuration(str, enum.Enum):
    one_week = "1_WEEK"
    one_month = "1_MONTH"
    three_months = "3_MONTHS"
    one_year = "1_YEAR"


class PromoCodeStatus(str, enum.Enum):
    pending = "PENDING"
    active = "ACTIVE"
    expired = "EXPIRED"


class PaymentStatus(str, enum.Enum):
    success = "SUCCESS"
    failed = "FAILED"


class PromoCode(Base):
    __tablename__ = "promo_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(15), unique=True, nullable=False, index=True)
    type: Mapped[PromoCodeType] = mapped_column(Enum(PromoCodeType, native_enum=False), nullable=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False)
    duration: Mapped[PromoCodeDuration] = mapped_column(Enum(PromoCodeDuration, native_enum=False), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_order_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status: Mapped[PromoCodeStatus] = mapped_column(
        Enum(PromoCodeStatus, native_enum=False), nullable=False, default=PromoCodeStatus.pending, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    activation_price: Mapped[int] = mapped_column(Integer, nullable=False)
    price_overridden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_provider: Mapped[str | None] = mapped_column(String(40), nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class PaymentWebhookEvent(Base):
    __tablename__ = "payment_webhook_events"
    __table_args__ = (UniqueConstraint("promo_code_id", "status", name="uq_payment_webhook_events_code_status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    promo_code_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status: Mapped[PaymentStatus] = mapped_column(Enum(PaymentStatus, native_enum=False), nullable=False)
    provider: Mapped[str | None] = mapped_column(String(40), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    last_attempt_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
