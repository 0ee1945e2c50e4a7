"""
Inventory Router — Stock alerts, restocks and reorders (admin).
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_notifier, require_admin
from db.models import InventoryAlert
from inventory.ledger import InventoryLedger

router = APIRouter(
    prefix="/api/v1/inventory",
    tags=["inventory"],
    dependencies=[Depends(require_admin)],
)


# ─── Schemas ────────────────────────────────────────────────────────────────


class AlertResponse(BaseModel):
    alert_id: UUID
    product_id: UUID
    product_title: str | None
    variant_sku: str
    alert_type: str
    threshold: int
    current_stock: int
    is_resolved: bool
    resolution: str | None
    auto_reorder: bool
    reorder_quantity: int
    created_at: datetime
    resolved_at: datetime | None


class AlertStats(BaseModel):
    active: int
    resolved: int


class AutoReorderConfig(BaseModel):
    enabled: bool
    quantity: int | None = Field(None, gt=0)


class ReorderRequest(BaseModel):
    quantity: int | None = Field(None, gt=0)


class ReorderResponse(BaseModel):
    alert: AlertResponse
    reorder_quantity: int
    new_stock: int


class RestockRequest(BaseModel):
    product_id: UUID
    variant_sku: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)


class RestockResponse(BaseModel):
    product_id: UUID
    variant_sku: str
    stock: int


class CheckRequest(BaseModel):
    threshold: int | None = Field(None, ge=0)


class SweepResponse(BaseModel):
    products_checked: int
    alerts_created: int
    alerts_resolved: int


class AutoReorderRunResponse(BaseModel):
    reordered: int
    errors: int


def _alert_response(alert: InventoryAlert) -> AlertResponse:
    return AlertResponse(
        alert_id=alert.alert_id,
        product_id=alert.product_id,
        product_title=alert.product.title if alert.product is not None else None,
        variant_sku=alert.variant_sku,
        alert_type=alert.alert_type,
        threshold=alert.threshold,
        current_stock=alert.current_stock,
        is_resolved=alert.is_resolved,
        resolution=alert.resolution,
        auto_reorder=alert.auto_reorder,
        reorder_quantity=alert.reorder_quantity,
        created_at=alert.created_at,
        resolved_at=alert.resolved_at,
    )


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise


# ─── Alerts ─────────────────────────────────────────────────────────────────


@router.get("/alerts", response_model=list[AlertResponse])
async def list_alerts(db: AsyncSession = Depends(get_db)):
    """Open low-stock and out-of-stock alerts, newest first."""
    return [_alert_response(a) for a in await InventoryLedger(db).list_open_alerts()]


@router.get("/alerts/history", response_model=list[AlertResponse])
async def alert_history(
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """All alerts including resolved ones and reorder events."""
    return [_alert_response(a) for a in await InventoryLedger(db).alert_history(limit=limit)]


@router.get("/alerts/stats", response_model=AlertStats)
async def alert_stats(db: AsyncSession = Depends(get_db)):
    return await InventoryLedger(db).alert_stats()


@router.patch("/alerts/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(alert_id: UUID, db: AsyncSession = Depends(get_db)):
    """Resolve an alert manually."""
    alert = await InventoryLedger(db).resolve_alert(alert_id)
    await _commit(db)
    return _alert_response(alert)


@router.put("/alerts/{alert_id}/auto-reorder", response_model=AlertResponse)
async def configure_auto_reorder(
    alert_id: UUID,
    body: AutoReorderConfig,
    db: AsyncSession = Depends(get_db),
):
    """Enable or disable auto-reorder on an alert."""
    alert = await InventoryLedger(db).configure_auto_reorder(alert_id, body.enabled, body.quantity)
    await _commit(db)
    return _alert_response(alert)


@router.post("/alerts/{alert_id}/reorder", response_model=ReorderResponse)
async def reorder(
    alert_id: UUID,
    body: ReorderRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Restock an alert's variant by its reorder quantity (or an explicit one)."""
    ledger = InventoryLedger(db)
    event = await ledger.auto_reorder(alert_id, quantity=body.quantity if body else None)
    alert = await ledger.get_alert(alert_id)
    await _commit(db)
    return ReorderResponse(
        alert=_alert_response(alert),
        reorder_quantity=event.reorder_quantity,
        new_stock=event.current_stock,
    )


# ─── Stock operations ───────────────────────────────────────────────────────


@router.post("/auto-reorder", response_model=AutoReorderRunResponse)
async def run_auto_reorders(db: AsyncSession = Depends(get_db)):
    """Reorder every open alert that has auto-reorder enabled."""
    summary = await InventoryLedger(db).process_auto_reorders()
    await _commit(db)
    return summary


@router.post("/check", response_model=SweepResponse)
async def check_inventory(
    body: CheckRequest | None = None,
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
):
    """Run the stock-level check across every active product."""
    ledger = InventoryLedger(db, notifier=notifier)
    summary = await ledger.sweep(threshold=body.threshold if body else None)
    await _commit(db)
    await ledger.dispatch_notifications()
    return summary


@router.post("/restock", response_model=RestockResponse)
async def restock(body: RestockRequest, db: AsyncSession = Depends(get_db)):
    """Add received stock to a variant; open alerts for it are resolved."""
    stock = await InventoryLedger(db).increment(body.product_id, body.variant_sku, body.quantity)
    await _commit(db)
    return RestockResponse(product_id=body.product_id, variant_sku=body.variant_sku, stock=stock)
