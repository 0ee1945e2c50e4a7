"""
Inventory Ledger — Per-variant stock counters and threshold alerts.

Stock only changes through conditional UPDATE statements so concurrent
checkouts cannot oversell a variant:

    UPDATE product_variants SET stock = stock - :q
    WHERE product_id = :p AND sku = :s AND stock >= :q

Alert lifecycle per (product, sku):
  - stock == 0               -> open out_of_stock (an open low_stock is superseded)
  - 0 < stock <= threshold   -> open low_stock (an open out_of_stock is resolved)
  - stock > threshold        -> resolve whatever is open

Ledger methods flush but never commit. Alert notifications are queued and
sent by dispatch_notifications() once the caller has committed.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.exceptions import (
    AlertAlreadyResolved,
    AlertNotFound,
    AutoReorderNotConfigured,
    InsufficientStock,
    StorefrontError,
    ValidationError,
    VariantNotFound,
)
from db.models import InventoryAlert, Product, ProductVariant
from notifications.email import deliver

logger = structlog.get_logger()

STOCK_ALERT_TYPES = ("low_stock", "out_of_stock")


@dataclass
class LevelCheckResult:
    created: list[InventoryAlert] = field(default_factory=list)
    resolved: list[InventoryAlert] = field(default_factory=list)


@dataclass(frozen=True)
class PendingAlertNotification:
    product_title: str
    variant_sku: str
    alert_type: str
    stock: int


def _as_uuid(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"Invalid identifier: {value}")


def _require_positive(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")


class InventoryLedger:
    """Authoritative stock counts and the alert state derived from them."""

    def __init__(
        self,
        db: AsyncSession,
        notifier=None,
        threshold: int | None = None,
        default_reorder_quantity: int | None = None,
    ):
        settings = get_settings()
        self.db = db
        self.notifier = notifier
        self.threshold = settings.low_stock_threshold if threshold is None else threshold
        self.default_reorder_quantity = default_reorder_quantity or settings.default_reorder_quantity
        self.pending_notifications: list[PendingAlertNotification] = []

    # ── Stock counters ──────────────────────────────────────────────────

    async def get_variant(self, product_id, sku: str) -> ProductVariant | None:
        result = await self.db.execute(
            select(ProductVariant)
            .where(ProductVariant.product_id == _as_uuid(product_id), ProductVariant.sku == sku)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def current_stock(self, product_id, sku: str) -> int:
        result = await self.db.execute(
            select(ProductVariant.stock).where(
                ProductVariant.product_id == _as_uuid(product_id),
                ProductVariant.sku == sku,
            )
        )
        stock = result.scalar_one_or_none()
        if stock is None:
            raise VariantNotFound(product_id, sku)
        return stock

    async def decrement(self, product_id, sku: str, quantity: int, check: bool = True) -> int:
        """
        Remove stock atomically. Returns the new stock level.

        Raises InsufficientStock (with the available quantity) when the
        floor check fails and VariantNotFound for an unknown SKU.
        """
        _require_positive(quantity)
        pid = _as_uuid(product_id)
        result = await self.db.execute(
            update(ProductVariant)
            .where(
                ProductVariant.product_id == pid,
                ProductVariant.sku == sku,
                ProductVariant.stock >= quantity,
            )
            .values(stock=ProductVariant.stock - quantity, updated_at=datetime.utcnow())
            .returning(ProductVariant.stock)
            .execution_options(synchronize_session=False)
        )
        new_stock = result.scalar_one_or_none()
        if new_stock is None:
            variant = await self.get_variant(pid, sku)
            if variant is None:
                raise VariantNotFound(product_id, sku)
            raise InsufficientStock(sku=sku, available=variant.stock, requested=quantity)

        await self.get_variant(pid, sku)  # sync identity map with the new count
        logger.info("inventory.decremented", product_id=str(pid), sku=sku, quantity=quantity, stock=new_stock)
        if check:
            await self.check_levels(pid)
        return new_stock

    async def increment(self, product_id, sku: str, quantity: int, resolution: str = "restock") -> int:
        """Add stock (restock/reorder) and resolve open stock alerts for the SKU."""
        _require_positive(quantity)
        pid = _as_uuid(product_id)
        result = await self.db.execute(
            update(ProductVariant)
            .where(ProductVariant.product_id == pid, ProductVariant.sku == sku)
            .values(stock=ProductVariant.stock + quantity, updated_at=datetime.utcnow())
            .returning(ProductVariant.stock)
            .execution_options(synchronize_session=False)
        )
        new_stock = result.scalar_one_or_none()
        if new_stock is None:
            raise VariantNotFound(product_id, sku)

        await self.get_variant(pid, sku)
        open_alerts = await self._open_alerts(pid, sku)
        for alert in open_alerts:
            self._resolve(alert, resolution)
        await self.db.flush()

        logger.info(
            "inventory.incremented",
            product_id=str(pid),
            sku=sku,
            quantity=quantity,
            stock=new_stock,
            alerts_resolved=len(open_alerts),
        )
        return new_stock

    # ── Level checks ────────────────────────────────────────────────────

    async def check_levels(self, product_id, threshold: int | None = None) -> LevelCheckResult:
        """Reconcile open alerts with current stock for every variant of a product."""
        limit = self.threshold if threshold is None else threshold
        outcome = LevelCheckResult()

        result = await self.db.execute(
            select(Product)
            .where(Product.product_id == _as_uuid(product_id))
            .execution_options(populate_existing=True)
        )
        product = result.scalar_one_or_none()
        if product is None:
            return outcome

        open_by_key = {(a.variant_sku, a.alert_type): a for a in await self._open_alerts(product.product_id)}

        for variant in product.variants:
            low = open_by_key.get((variant.sku, "low_stock"))
            out = open_by_key.get((variant.sku, "out_of_stock"))

            if variant.stock == 0:
                if low is not None:
                    outcome.resolved.append(self._resolve(low, "superseded"))
                if out is None:
                    created = await self._open_alert(product, variant, "out_of_stock", limit)
                    if created is not None:
                        outcome.created.append(created)
            elif variant.stock <= limit:
                if out is not None:
                    outcome.resolved.append(self._resolve(out, "auto"))
                if low is None:
                    created = await self._open_alert(product, variant, "low_stock", limit)
                    if created is not None:
                        outcome.created.append(created)
            else:
                for alert in (low, out):
                    if alert is not None:
                        outcome.resolved.append(self._resolve(alert, "auto"))

        await self.db.flush()
        return outcome

    async def sweep(self, threshold: int | None = None) -> dict[str, int]:
        """check_levels across every active product."""
        result = await self.db.execute(select(Product.product_id).where(Product.is_active.is_(True)))
        product_ids = [row.product_id for row in result.all()]

        created = resolved = 0
        for pid in product_ids:
            outcome = await self.check_levels(pid, threshold)
            created += len(outcome.created)
            resolved += len(outcome.resolved)

        summary = {"products_checked": len(product_ids), "alerts_created": created, "alerts_resolved": resolved}
        logger.info("inventory.sweep_complete", **summary)
        return summary

    # ── Alerts ──────────────────────────────────────────────────────────

    async def get_alert(self, alert_id) -> InventoryAlert:
        alert = await self.db.get(InventoryAlert, _as_uuid(alert_id))
        if alert is None:
            raise AlertNotFound(alert_id)
        return alert

    async def resolve_alert(self, alert_id) -> InventoryAlert:
        alert = await self.get_alert(alert_id)
        if alert.is_resolved:
            raise AlertAlreadyResolved(alert_id)
        self._resolve(alert, "manual")
        await self.db.flush()
        return alert

    async def configure_auto_reorder(self, alert_id, enabled: bool, quantity: int | None = None) -> InventoryAlert:
        alert = await self.get_alert(alert_id)
        if quantity is not None:
            _require_positive(quantity)
        alert.auto_reorder = enabled
        alert.reorder_quantity = quantity or alert.reorder_quantity or self.default_reorder_quantity
        await self.db.flush()
        return alert

    async def auto_reorder(self, alert_id, quantity: int | None = None) -> InventoryAlert:
        """
        Restock the alert's variant by its reorder quantity and resolve it.

        Returns the recorded reorder event (a resolved 'reorder' alert).
        An explicit quantity allows a manual reorder on alerts without
        auto-reorder configured.
        """
        alert = await self.get_alert(alert_id)
        if alert.is_resolved:
            raise AlertAlreadyResolved(alert_id)

        if quantity is not None:
            _require_positive(quantity)
            reorder_qty = quantity
        elif alert.auto_reorder:
            reorder_qty = alert.reorder_quantity
        else:
            raise AutoReorderNotConfigured(f"Auto-reorder is not enabled for alert {alert_id}")

        new_stock = await self.increment(alert.product_id, alert.variant_sku, reorder_qty, resolution="reorder")
        self._resolve(alert, "reorder")

        reorder_event = InventoryAlert(
            product_id=alert.product_id,
            variant_sku=alert.variant_sku,
            alert_type="reorder",
            threshold=alert.threshold,
            current_stock=new_stock,
            is_resolved=True,
            resolution="reorder",
            auto_reorder=alert.auto_reorder,
            reorder_quantity=reorder_qty,
            resolved_at=datetime.utcnow(),
        )
        self.db.add(reorder_event)
        await self.db.flush()

        logger.info(
            "inventory.reordered",
            alert_id=str(alert.alert_id),
            product_id=str(alert.product_id),
            sku=alert.variant_sku,
            quantity=reorder_qty,
            stock=new_stock,
        )
        return reorder_event

    async def process_auto_reorders(self) -> dict[str, int]:
        """Run auto_reorder for every open stock alert that has it enabled."""
        result = await self.db.execute(
            select(InventoryAlert)
            .where(
                InventoryAlert.is_resolved.is_(False),
                InventoryAlert.auto_reorder.is_(True),
                InventoryAlert.alert_type.in_(STOCK_ALERT_TYPES),
            )
            .order_by(InventoryAlert.created_at)
        )
        alerts = result.scalars().all()

        reordered = errors = 0
        for alert in alerts:
            if alert.is_resolved:
                continue
            try:
                async with self.db.begin_nested():
                    await self.auto_reorder(alert.alert_id)
                reordered += 1
            except StorefrontError as exc:
                errors += 1
                logger.error(
                    "inventory.auto_reorder_failed",
                    alert_id=str(alert.alert_id),
                    sku=alert.variant_sku,
                    error=str(exc),
                )

        return {"reordered": reordered, "errors": errors}

    async def list_open_alerts(self) -> list[InventoryAlert]:
        result = await self.db.execute(
            select(InventoryAlert)
            .where(InventoryAlert.is_resolved.is_(False))
            .order_by(InventoryAlert.created_at.desc())
        )
        return list(result.scalars().all())

    async def alert_history(self, limit: int = 100) -> list[InventoryAlert]:
        result = await self.db.execute(
            select(InventoryAlert).order_by(InventoryAlert.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def alert_stats(self) -> dict[str, int]:
        result = await self.db.execute(
            select(InventoryAlert.is_resolved, func.count(InventoryAlert.alert_id)).group_by(
                InventoryAlert.is_resolved
            )
        )
        counts = {bool(row[0]): row[1] for row in result.all()}
        return {"active": counts.get(False, 0), "resolved": counts.get(True, 0)}

    # ── Notifications ───────────────────────────────────────────────────

    async def dispatch_notifications(self) -> int:
        """Send queued alert notifications. Call after the transaction commits."""
        pending, self.pending_notifications = self.pending_notifications, []
        if self.notifier is None:
            return 0
        sent = 0
        for note in pending:
            if await deliver(
                self.notifier.send_inventory_alert,
                note.product_title,
                note.variant_sku,
                note.alert_type,
                note.stock,
                kind="inventory_alert",
            ):
                sent += 1
        return sent

    def discard_notifications(self) -> None:
        self.pending_notifications = []

    # ── Internals ───────────────────────────────────────────────────────

    async def _open_alerts(self, product_id: uuid.UUID, sku: str | None = None) -> list[InventoryAlert]:
        query = select(InventoryAlert).where(
            InventoryAlert.product_id == product_id,
            InventoryAlert.is_resolved.is_(False),
            InventoryAlert.alert_type.in_(STOCK_ALERT_TYPES),
        )
        if sku is not None:
            query = query.where(InventoryAlert.variant_sku == sku)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _open_alert(
        self,
        product: Product,
        variant: ProductVariant,
        alert_type: str,
        threshold: int,
    ) -> InventoryAlert | None:
        now = datetime.utcnow()
        alert = InventoryAlert(
            product_id=product.product_id,
            variant_sku=variant.sku,
            alert_type=alert_type,
            threshold=threshold,
            current_stock=variant.stock,
            reorder_quantity=self.default_reorder_quantity,
            notified_at=now,
            created_at=now,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(alert)
        except IntegrityError:
            # Another transaction opened the same alert first
            logger.info("inventory.alert_exists", product_id=str(product.product_id), sku=variant.sku, type=alert_type)
            return None

        self.pending_notifications.append(
            PendingAlertNotification(
                product_title=product.title,
                variant_sku=variant.sku,
                alert_type=alert_type,
                stock=variant.stock,
            )
        )
        logger.info(
            "inventory.alert_created",
            product_id=str(product.product_id),
            sku=variant.sku,
            type=alert_type,
            stock=variant.stock,
            threshold=threshold,
        )
        return alert

    def _resolve(self, alert: InventoryAlert, resolution: str) -> InventoryAlert:
        alert.is_resolved = True
        alert.resolved_at = datetime.utcnow()
        alert.resolution = resolution
        logger.info(
            "inventory.alert_resolved",
            alert_id=str(alert.alert_id),
            sku=alert.variant_sku,
            type=alert.alert_type,
            resolution=resolution,
        )
        return alert
