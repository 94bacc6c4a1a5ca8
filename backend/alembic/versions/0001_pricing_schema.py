"""pricing schema: catalog, promotion rules, promo codes

Revision ID: 0001
Revises:
Create Date: 2025-01-20
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: Sequence[str] | None = None

_SINGLE_TAG = "applied_rule_id IS NULL OR applied_promo_code_id IS NULL"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _pricing_columns() -> list[sa.Column]:
    return [
        sa.Column("old_price", sa.Integer(), nullable=True),
        sa.Column("is_promotion", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "applied_rule_id",
            sa.Integer(),
            sa.ForeignKey("promotion_rules.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "applied_promo_code_id",
            sa.Integer(),
            sa.ForeignKey("promo_codes.id", ondelete="SET NULL"),
            nullable=True,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False),
    )

    op.create_table(
        "promo_codes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=15), nullable=False),
        sa.Column("type", sa.String(length=12), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False),
        sa.Column("duration", sa.String(length=8), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_order_amount", sa.Integer(), nullable=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=7), nullable=False, server_default="PENDING"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("activation_price", sa.Integer(), nullable=False),
        sa.Column("price_overridden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_provider", sa.String(length=40), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_promo_codes_code", "promo_codes", ["code"], unique=True)
    op.create_index("ix_promo_codes_end_date", "promo_codes", ["end_date"])
    op.create_index("ix_promo_codes_owner_id", "promo_codes", ["owner_id"])
    op.create_index("ix_promo_codes_status", "promo_codes", ["status"])

    op.create_table(
        "promotion_rules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=True),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("reference", sa.String(length=64), nullable=True),
        sa.Column("is_new", sa.Boolean(), nullable=True),
        sa.Column("is_best_seller", sa.Boolean(), nullable=True),
        sa.Column("discount_percentage", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_promotion_rules_priority", "promotion_rules", ["priority"])
    op.create_index("ix_promotion_rules_end_date", "promotion_rules", ["end_date"])

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("reference", sa.String(length=64), nullable=True),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("is_new", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_best_seller", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=True),
        sa.Column("owner_id", sa.Integer(), nullable=True),
        *_pricing_columns(),
        *_timestamps(),
        sa.CheckConstraint(_SINGLE_TAG, name="ck_products_single_discount_tag"),
    )
    op.create_index("ix_products_reference", "products", ["reference"])
    op.create_index("ix_products_category_id", "products", ["category_id"])
    op.create_index("ix_products_owner_id", "products", ["owner_id"])
    op.create_index("ix_products_applied_rule_id", "products", ["applied_rule_id"])
    op.create_index("ix_products_applied_promo_code_id", "products", ["applied_promo_code_id"])

    op.create_table(
        "product_variants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reference", sa.String(length=64), nullable=True),
        sa.Column("color", sa.String(length=40), nullable=True),
        sa.Column("size", sa.String(length=20), nullable=True),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("price", sa.Integer(), nullable=True),
        *_pricing_columns(),
        *_timestamps(),
        sa.CheckConstraint(_SINGLE_TAG, name="ck_product_variants_single_discount_tag"),
    )
    op.create_index("ix_product_variants_reference", "product_variants", ["reference"])
    op.create_index("ix_product_variants_applied_rule_id", "product_variants", ["applied_rule_id"])
    op.create_index("ix_product_variants_applied_promo_code_id", "product_variants", ["applied_promo_code_id"])

    op.create_table(
        "payment_webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("promo_code_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=7), nullable=False),
        sa.Column("provider", sa.String(length=40), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.UniqueConstraint("promo_code_id", "status", name="uq_payment_webhook_events_code_status"),
    )
    op.create_index("ix_payment_webhook_events_promo_code_id", "payment_webhook_events", ["promo_code_id"])
    op.create_index("ix_payment_webhook_events_last_attempt_at", "payment_webhook_events", ["last_attempt_at"])
    op.create_index("ix_payment_webhook_events_processed_at", "payment_webhook_events", ["processed_at"])


def downgrade() -> None:
    op.drop_table("payment_webhook_events")
    op.drop_table("product_variants")
    op.drop_table("products")
    op.drop_table("promotion_rules")
    op.drop_table("promo_codes")
    op.drop_table("categories")
