from promo_engine.db.base import Base  # noqa: F401
from promo_engine.models.catalog import Category, Product, ProductVariant  # noqa: F401
from promo_engine.models.promotion import PromotionRule  # noqa: F401
from promo_engine.models.promo_code import (
    PaymentStatus,
    PaymentWebhookEvent,
    PromoCode,
    PromoCodeDuration,
    PromoCodeStatus,
    PromoCodeType,
)  # noqa: F401

__all__ = [
    "Base",
    "Category",
    "Product",
    "ProductVariant",
    "PromotionRule",
    "PromoCode",
    "PromoCodeType",
    "PromoCodeDuration",
    "PromoCodeStatus",
    "PaymentStatus",
    "PaymentWebhookEvent",
]
