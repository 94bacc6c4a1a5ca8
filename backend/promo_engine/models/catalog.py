from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from promo_engine.db.base import Base

_SINGLE_TAG = "applied_rule_id IS NULL OR applied_promo_code_id IS NULL"


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)


class PricedEntityMixin:
    """Price columns shared by products and variants.

    ``old_price`` is set exactly while a discount or markup is applied and then
    holds the authoritative base price; ``price`` is derived from it.
    """

    price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    old_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_promotion: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    applied_rule_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("promotion_rules.id", ondelete="SET NULL"), nullable=True, index=True
    )
    applied_promo_code_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("promo_codes.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class Product(PricedEntityMixin, Base):
    __tablename__ = "products"
    __table_args__ = (CheckConstraint(_SINGLE_TAG, name="ck_products_single_discount_tag"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    is_new: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_best_seller: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    category_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    variants: Mapped[list["ProductVariant"]] = relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProductVariant.id",
    )


class ProductVariant(PricedEntityMixin, Base):
    __tablename__ = "product_variants"
    __table_args__ = (CheckConstraint(_SINGLE_TAG, name="ck_product_variants_single_discount_tag"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    color: Mapped[str | None] = mapped_column(String(40), nullable=True)
    size: Mapped[str | None] = mapped_column(String(20), nullable=True)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    product: Mapped[Product] = relationship("Product", back_populates="variants", lazy="joined")
