"""
Orders Router — Order lookup, customer history and fulfilment status.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db, get_notifier, require_admin
from db.models import ORDER_STATUSES, Order
from orders.ledger import OrderLedger

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class OrderItemResponse(BaseModel):
    product_id: str
    variant_sku: str
    title: str
    color: str | None
    size: str | None
    image: str | None
    unit_price: float
    quantity: int
    line_total: float

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    order_id: UUID
    order_number: str
    customer_email: str
    customer_name: str
    shipping_address: dict
    items: list[OrderItemResponse]
    subtotal: float
    shipping: float
    tax: float
    total: float
    currency: str
    status: str
    tracking_number: str | None
    tracking_url: str | None
    carrier: str | None
    created_at: datetime
    shipped_at: datetime | None
    delivered_at: datetime | None

    model_config = {"from_attributes": True}


class StatusUpdate(BaseModel):
    status: str
    tracking_number: str | None = Field(None, max_length=100)
    tracking_url: str | None = Field(None, max_length=500)
    carrier: str | None = Field(None, max_length=50)
    note: str | None = None


class OrderSummary(BaseModel):
    total_orders: int
    by_status: dict[str, int]
    revenue: float


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[OrderResponse])
async def list_orders(
    status_filter: str | None = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    _admin: dict = Depends(require_admin),
):
    """List orders, newest first (admin)."""
    if status_filter and status_filter not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status_filter}")
    return await OrderLedger(db).list_orders(status=status_filter, skip=skip, limit=limit)


@router.get("/summary", response_model=OrderSummary)
async def order_summary(
    db: AsyncSession = Depends(get_db),
    _admin: dict = Depends(require_admin),
):
    """Order counts per status and revenue (admin dashboard)."""
    return await OrderLedger(db).summary()


@router.get("/history/{email}", response_model=list[OrderResponse])
async def customer_history(
    email: str,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Orders placed with an email address. Customers only see their own."""
    roles = user.get("roles") or []
    if "admin" not in roles and (user.get("email") or "").lower() != email.lower():
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot view another customer's orders")
    return await OrderLedger(db).find_by_customer(email)


@router.get("/{order_number}", response_model=OrderResponse)
async def get_order(
    order_number: str,
    db: AsyncSession = Depends(get_db),
):
    """Look up an order by its order number."""
    return await OrderLedger(db).find_by_number(order_number)


@router.patch("/{order_number}/status", response_model=OrderResponse)
async def update_order_status(
    order_number: str,
    body: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    admin: dict = Depends(require_admin),
    notifier=Depends(get_notifier),
):
    """Move an order through its lifecycle; customers are emailed on visible steps."""
    ledger = OrderLedger(db, notifier=notifier)
    try:
        order: Order = await ledger.update_status(
            order_number,
            body.status,
            tracking_number=body.tracking_number,
            tracking_url=body.tracking_url,
            carrier=body.carrier,
            actor=admin.get("email") or admin.get("sub"),
            note=body.note,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await ledger.notify_status_change(order, body.status)
    return order
