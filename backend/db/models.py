"""
Storefront Core Database Models

Tables:
  Catalog:
  1. products              - Catalog entries (base price, active flag)
  2. product_variants      - Color/size SKUs with stock counters

  Orders:
  3. orders                - Placed orders with frozen totals
  4. order_items           - Frozen line items (title/price/variant at order time)
  5. order_status_changes  - Audit trail of status transitions

  Inventory:
  6. inventory_alerts      - Low-stock / out-of-stock / reorder events

  Payments:
  7. payment_events        - Idempotency keys for payment confirmations
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    event,
    inspect,
    text,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from core.exceptions import ImmutableOrderError
from db.session import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


def Money():
    return Numeric(10, 2, asdecimal=True)


ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
ALERT_TYPES = ("low_stock", "out_of_stock", "reorder")


# ─── 1. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    description = Column(Text)
    category = Column(String(100), default="general")
    price = Column(Money(), nullable=False)
    images = Column(JSON, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_products_active", "is_active"),
        CheckConstraint("price >= 0", name="ck_product_price_positive"),
    )

    variants = relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariant.sku",
        lazy="selectin",
    )


# ─── 2. Product Variants ───────────────────────────────────────────────────


class ProductVariant(Base):
    __tablename__ = "product_variants"

    variant_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.product_id", ondelete="CASCADE"), nullable=False)
    sku = Column(String(100), nullable=False)
    color = Column(String(50))
    size = Column(String(50))
    stock = Column(Integer, nullable=False, default=0)
    price_modifier = Column(Money(), nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("product_id", "sku", name="uq_variant_sku_per_product"),
        CheckConstraint("stock >= 0", name="ck_variant_stock_non_negative"),
    )

    product = relationship("Product", back_populates="variants")


# ─── 3. Orders ──────────────────────────────────────────────────────────────


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    order_number = Column(String(40), nullable=False, unique=True)
    customer_email = Column(String(255), nullable=False)
    customer_name = Column(String(255), nullable=False)
    customer_id = Column(String(64))
    shipping_address = Column(JSON, nullable=False)
    subtotal = Column(Money(), nullable=False)
    shipping = Column(Money(), nullable=False, default=0)
    tax = Column(Money(), nullable=False, default=0)
    total = Column(Money(), nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(20), nullable=False, default="pending")

    # Payment provider references (deferred checkout)
    payment_session_id = Column(String(255), unique=True)
    payment_intent_id = Column(String(255))

    # Fulfilment
    tracking_number = Column(String(100))
    tracking_url = Column(String(500))
    carrier = Column(String(50))
    shipped_at = Column(DateTime)
    delivered_at = Column(DateTime)
    cancelled_at = Column(DateTime)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_orders_customer_email", "customer_email"),
        Index("ix_orders_status", "status"),
        CheckConstraint("total >= 0", name="ck_order_total_positive"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'shipped', 'delivered', 'cancelled')",
            name="ck_order_status",
        ),
    )

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )


# ─── 4. Order Items ─────────────────────────────────────────────────────────


class OrderItem(Base):
    __tablename__ = "order_items"

    order_item_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    order_id = Column(GUID(), ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    # Weak references into the catalog; the rest is a snapshot
    product_id = Column(String(64), nullable=False)
    variant_sku = Column(String(100), nullable=False)
    title = Column(String(255), nullable=False)
    color = Column(String(50))
    size = Column(String(50))
    image = Column(String(500))
    unit_price = Column(Money(), nullable=False)
    quantity = Column(Integer, nullable=False)
    line_total = Column(Money(), nullable=False)

    __table_args__ = (
        Index("ix_order_items_order", "order_id"),
        CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
    )

    order = relationship("Order", back_populates="items")


# ─── 5. Order Status Changes ────────────────────────────────────────────────


class OrderStatusChange(Base):
    __tablename__ = "order_status_changes"

    change_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    order_id = Column(GUID(), ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False)
    from_status = Column(String(20))
    to_status = Column(String(20), nullable=False)
    changed_by = Column(String(255))
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_order_status_changes_order", "order_id"),)


# ─── 6. Inventory Alerts ────────────────────────────────────────────────────


class InventoryAlert(Base):
    __tablename__ = "inventory_alerts"

    alert_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.product_id", ondelete="CASCADE"), nullable=False)
    variant_sku = Column(String(100), nullable=False)
    alert_type = Column(String(20), nullable=False)
    threshold = Column(Integer, nullable=False, default=10)
    current_stock = Column(Integer, nullable=False)
    is_resolved = Column(Boolean, nullable=False, default=False)
    resolution = Column(String(20))  # auto, manual, restock, reorder, superseded
    auto_reorder = Column(Boolean, nullable=False, default=False)
    reorder_quantity = Column(Integer, nullable=False, default=50)
    notified_at = Column(DateTime)
    resolved_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_inventory_alerts_key", "product_id", "variant_sku", "is_resolved"),
        # At most one open alert per (product, sku, type)
        Index(
            "uq_inventory_alerts_open",
            "product_id",
            "variant_sku",
            "alert_type",
            unique=True,
            postgresql_where=text("is_resolved = false"),
            sqlite_where=text("is_resolved = 0"),
        ),
        CheckConstraint("alert_type IN ('low_stock', 'out_of_stock', 'reorder')", name="ck_inventory_alert_type"),
        CheckConstraint("reorder_quantity > 0", name="ck_inventory_alert_reorder_qty_positive"),
    )

    product = relationship("Product", lazy="joined")


# ─── 7. Payment Events ──────────────────────────────────────────────────────


class PaymentEvent(Base):
    __tablename__ = "payment_events"

    payment_event_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    provider = Column(String(30), nullable=False)
    session_id = Column(String(255), nullable=False, unique=True)
    event_id = Column(String(255))
    payment_intent_id = Column(String(255))
    outcome = Column(String(20), nullable=False)  # processed, rejected
    order_number = Column(String(40))
    error = Column(Text)
    received_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("outcome IN ('processed', 'rejected')", name="ck_payment_event_outcome"),
    )


# ─── Placed-order immutability ──────────────────────────────────────────────

_FROZEN_ORDER_FIELDS = (
    "subtotal",
    "shipping",
    "tax",
    "total",
    "currency",
    "customer_email",
    "customer_name",
    "shipping_address",
)


def _previous_status(order: Order) -> str:
    history = inspect(order).attrs.status.history
    if history.deleted:
        return history.deleted[0]
    return order.status


@event.listens_for(Order, "before_update")
def _guard_order_totals(mapper, connection, target: Order):
    if _previous_status(target) == "pending":
        return
    state = inspect(target)
    changed = [name for name in _FROZEN_ORDER_FIELDS if state.attrs[name].history.has_changes()]
    if changed:
        raise ImmutableOrderError(
            f"Order {target.order_number} is {target.status}; cannot modify {', '.join(changed)}"
        )


@event.listens_for(OrderItem, "before_update")
def _guard_order_items(mapper, connection, target: OrderItem):
    parent = inspect(target).attrs.order.loaded_value
    if isinstance(parent, Order) and _previous_status(parent) == "pending":
        return
    raise ImmutableOrderError("Line items of a placed order cannot be modified")
