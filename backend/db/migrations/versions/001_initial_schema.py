"""
Initial schema - catalog, orders, inventory alerts, payment events

Revision ID: 001
Revises: None
Create Date: 2026-10-16
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Products
    op.create_table(
        "products",
        sa.Column("product_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False, unique=True),
        sa.Column("description", sa.Text),
        sa.Column("category", sa.String(100), server_default="general"),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("images", sa.JSON),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("price >= 0", name="ck_product_price_positive"),
    )
    op.create_index("ix_products_active", "products", ["is_active"])

    # 2. Product Variants
    op.create_table(
        "product_variants",
        sa.Column("variant_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "product_id",
            UUID(as_uuid=True),
            sa.ForeignKey("products.product_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("color", sa.String(50)),
        sa.Column("size", sa.String(50)),
        sa.Column("stock", sa.Integer, nullable=False, server_default="0"),
        sa.Column("price_modifier", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("product_id", "sku", name="uq_variant_sku_per_product"),
        sa.CheckConstraint("stock >= 0", name="ck_variant_stock_non_negative"),
    )

    # 3. Orders
    op.create_table(
        "orders",
        sa.Column("order_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("order_number", sa.String(40), nullable=False, unique=True),
        sa.Column("customer_email", sa.String(255), nullable=False),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("customer_id", sa.String(64)),
        sa.Column("shipping_address", sa.JSON, nullable=False),
        sa.Column("subtotal", sa.Numeric(10, 2), nullable=False),
        sa.Column("shipping", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("tax", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("total", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="usd"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_session_id", sa.String(255), unique=True),
        sa.Column("payment_intent_id", sa.String(255)),
        sa.Column("tracking_number", sa.String(100)),
        sa.Column("tracking_url", sa.String(500)),
        sa.Column("carrier", sa.String(50)),
        sa.Column("shipped_at", sa.DateTime),
        sa.Column("delivered_at", sa.DateTime),
        sa.Column("cancelled_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("total >= 0", name="ck_order_total_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'shipped', 'delivered', 'cancelled')",
            name="ck_order_status",
        ),
    )
    op.create_index("ix_orders_customer_email", "orders", ["customer_email"])
    op.create_index("ix_orders_status", "orders", ["status"])

    # 4. Order Items
    op.create_table(
        "order_items",
        sa.Column("order_item_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "order_id",
            UUID(as_uuid=True),
            sa.ForeignKey("orders.order_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("variant_sku", sa.String(100), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("color", sa.String(50)),
        sa.Column("size", sa.String(50)),
        sa.Column("image", sa.String(500)),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("line_total", sa.Numeric(10, 2), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
    )
    op.create_index("ix_order_items_order", "order_items", ["order_id"])

    # 5. Order Status Changes
    op.create_table(
        "order_status_changes",
        sa.Column("change_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "order_id",
            UUID(as_uuid=True),
            sa.ForeignKey("orders.order_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("from_status", sa.String(20)),
        sa.Column("to_status", sa.String(20), nullable=False),
        sa.Column("changed_by", sa.String(255)),
        sa.Column("notes", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_order_status_changes_order", "order_status_changes", ["order_id"])

    # 6. Inventory Alerts
    op.create_table(
        "inventory_alerts",
        sa.Column("alert_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "product_id",
            UUID(as_uuid=True),
            sa.ForeignKey("products.product_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("variant_sku", sa.String(100), nullable=False),
        sa.Column("alert_type", sa.String(20), nullable=False),
        sa.Column("threshold", sa.Integer, nullable=False, server_default="10"),
        sa.Column("current_stock", sa.Integer, nullable=False),
        sa.Column("is_resolved", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("resolution", sa.String(20)),
        sa.Column("auto_reorder", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("reorder_quantity", sa.Integer, nullable=False, server_default="50"),
        sa.Column("notified_at", sa.DateTime),
        sa.Column("resolved_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("alert_type IN ('low_stock', 'out_of_stock', 'reorder')", name="ck_inventory_alert_type"),
        sa.CheckConstraint("reorder_quantity > 0", name="ck_inventory_alert_reorder_qty_positive"),
    )
    op.create_index("ix_inventory_alerts_key", "inventory_alerts", ["product_id", "variant_sku", "is_resolved"])
    op.create_index(
        "uq_inventory_alerts_open",
        "inventory_alerts",
        ["product_id", "variant_sku", "alert_type"],
        unique=True,
        postgresql_where=sa.text("is_resolved = false"),
    )

    # 7. Payment Events
    op.create_table(
        "payment_events",
        sa.Column(
            "payment_event_id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("provider", sa.String(30), nullable=False),
        sa.Column("session_id", sa.String(255), nullable=False, unique=True),
        sa.Column("event_id", sa.String(255)),
        sa.Column("payment_intent_id", sa.String(255)),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("order_number", sa.String(40)),
        sa.Column("error", sa.Text),
        sa.Column("received_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("outcome IN ('processed', 'rejected')", name="ck_payment_event_outcome"),
    )


def downgrade() -> None:
    tables = [
        "payment_events",
        "inventory_alerts",
        "order_status_changes",
        "order_items",
        "orders",
        "product_variants",
        "products",
    ]
    for table in tables:
        op.drop_table(table)
