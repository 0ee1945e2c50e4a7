"""
Order Ledger — persisted orders and their status lifecycle.

State machine:
    pending → processing → shipped → delivered
    pending | processing → cancelled

Line items and totals are frozen once an order leaves pending (see the
flush guards in db/models.py); only status and tracking fields move after
that. Methods flush, callers commit.
"""

import secrets
import time
from collections.abc import Iterable
from datetime import datetime

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.exceptions import DuplicateOrderNumber, InvalidTransition, OrderNotFound, ValidationError
from db.models import ORDER_STATUSES, Order, OrderItem, OrderStatusChange
from notifications.email import deliver
from pricing.calculator import PricedLine, Totals

logger = structlog.get_logger()

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"delivered"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
}

# Statuses the customer hears about by email
NOTIFY_STATUSES = frozenset({"processing", "shipped", "delivered"})

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_order_number(prefix: str | None = None) -> str:
    """PREFIX-<base36 epoch millis>-<4 random base36 chars>."""
    prefix = prefix or get_settings().order_number_prefix
    stamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{prefix}-{stamp}-{suffix}"


def can_transition(current: str, new_status: str) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current, frozenset())


class OrderLedger:
    def __init__(self, db: AsyncSession, notifier=None):
        self.db = db
        self.notifier = notifier
        self.settings = get_settings()

    async def create(
        self,
        customer_email: str,
        customer_name: str,
        shipping_address: dict,
        lines: Iterable[PricedLine],
        totals: Totals,
        status: str = "processing",
        customer_id: str | None = None,
        order_number: str | None = None,
        payment_session_id: str | None = None,
        payment_intent_id: str | None = None,
        actor: str = "checkout",
    ) -> Order:
        """
        Insert an order with frozen line items and totals.

        A pre-reserved order_number is tried first. Collisions on the unique
        order number retry with fresh numbers up to ORDER_NUMBER_MAX_ATTEMPTS.
        """
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Unknown order status: {status}")
        lines = list(lines)
        if not lines:
            raise ValidationError("An order needs at least one line item")

        attempts = max(1, self.settings.order_number_max_attempts)
        for attempt in range(attempts):
            number = order_number if attempt == 0 and order_number else generate_order_number()
            order = Order(
                order_number=number,
                customer_email=customer_email,
                customer_name=customer_name,
                customer_id=customer_id,
                shipping_address=dict(shipping_address),
                subtotal=totals.subtotal,
                shipping=totals.shipping,
                tax=totals.tax,
                total=totals.total,
                currency=self.settings.currency,
                status=status,
                payment_session_id=payment_session_id,
                payment_intent_id=payment_intent_id,
                items=[
                    OrderItem(
                        position=position,
                        product_id=str(line.product_id),
                        variant_sku=line.variant_sku,
                        title=line.title,
                        color=line.color,
                        size=line.size,
                        image=line.image or None,
                        unit_price=line.unit_price,
                        quantity=line.quantity,
                        line_total=line.line_total,
                    )
                    for position, line in enumerate(lines)
                ],
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(order)
            except IntegrityError:
                logger.warning("orders.number_collision", order_number=number, attempt=attempt + 1)
                continue

            self.db.add(OrderStatusChange(order_id=order.order_id, from_status=None, to_status=status, changed_by=actor))
            await self.db.flush()
            logger.info(
                "orders.created",
                order_number=order.order_number,
                status=status,
                total=str(order.total),
                items=len(lines),
            )
            return order

        raise DuplicateOrderNumber(f"Could not allocate a unique order number after {attempts} attempts")

    async def update_status(
        self,
        order_number: str,
        new_status: str,
        tracking_number: str | None = None,
        tracking_url: str | None = None,
        carrier: str | None = None,
        actor: str | None = None,
        note: str | None = None,
    ) -> Order:
        order = await self.find_by_number(order_number)
        current = order.status
        if new_status not in ORDER_STATUSES or not can_transition(current, new_status):
            raise InvalidTransition(current, new_status)

        now = datetime.utcnow()
        order.status = new_status
        if new_status == "shipped":
            order.shipped_at = now
        elif new_status == "delivered":
            order.delivered_at = now
        elif new_status == "cancelled":
            order.cancelled_at = now
        if tracking_number is not None:
            order.tracking_number = tracking_number
        if tracking_url is not None:
            order.tracking_url = tracking_url
        if carrier is not None:
            order.carrier = carrier

        self.db.add(
            OrderStatusChange(
                order_id=order.order_id,
                from_status=current,
                to_status=new_status,
                changed_by=actor,
                notes=note,
            )
        )
        await self.db.flush()
        logger.info("orders.status_changed", order_number=order_number, from_status=current, to_status=new_status)
        return order

    async def status_history(self, order_number: str) -> list[OrderStatusChange]:
        order = await self.find_by_number(order_number)
        result = await self.db.execute(
            select(OrderStatusChange)
            .where(OrderStatusChange.order_id == order.order_id)
            .order_by(OrderStatusChange.created_at)
        )
        return list(result.scalars().all())

    # ── Lookups ─────────────────────────────────────────────────────────

    async def find_by_number(self, order_number: str) -> Order:
        result = await self.db.execute(select(Order).where(Order.order_number == order_number))
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFound(order_number)
        return order

    async def find_by_customer(self, email: str) -> list[Order]:
        result = await self.db.execute(
            select(Order)
            .where(func.lower(Order.customer_email) == email.strip().lower())
            .order_by(Order.created_at.desc())
        )
        return list(result.scalars().all())

    async def find_by_payment_session(self, session_id: str) -> Order | None:
        result = await self.db.execute(select(Order).where(Order.payment_session_id == session_id))
        return result.scalar_one_or_none()

    async def list_orders(self, status: str | None = None, skip: int = 0, limit: int = 50) -> list[Order]:
        query = select(Order)
        if status:
            query = query.where(Order.status == status)
        query = query.order_by(Order.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def summary(self) -> dict:
        """Order counts per status and revenue over non-cancelled orders."""
        result = await self.db.execute(select(Order.status, func.count(Order.order_id)).group_by(Order.status))
        by_status = {status: 0 for status in ORDER_STATUSES}
        by_status.update({row[0]: row[1] for row in result.all()})

        revenue = await self.db.execute(select(func.coalesce(func.sum(Order.total), 0)).where(Order.status != "cancelled"))
        return {
            "total_orders": sum(by_status.values()),
            "by_status": by_status,
            "revenue": float(revenue.scalar_one()),
        }

    # ── Notifications (call after commit) ───────────────────────────────

    async def notify_confirmation(self, order: Order) -> bool:
        if self.notifier is None:
            return False
        return await deliver(self.notifier.send_order_confirmation, order, kind="order_confirmation")

    async def notify_status_change(self, order: Order, status: str) -> bool:
        if self.notifier is None or status not in NOTIFY_STATUSES:
            return False
        return await deliver(self.notifier.send_shipping_update, order, status, kind="shipping_update")
