"""
Inventory Worker — Periodic stock-level sweep and auto-reorders.

sweep_stock_levels runs every 15 minutes: check_levels for every active
product, so alerts are raised even when a post-checkout check failed.
process_auto_reorders runs hourly for alerts with auto-reorder enabled.

Queue: inventory
"""

import asyncio
from datetime import datetime, timezone

import structlog

from workers.celery_app import celery_app

logger = structlog.get_logger()


async def run_sweep(session_factory, notifier=None, threshold: int | None = None) -> dict:
    from inventory.ledger import InventoryLedger

    async with session_factory() as db:
        ledger = InventoryLedger(db, notifier=notifier)
        summary = await ledger.sweep(threshold=threshold)
        await db.commit()
        summary["notifications_sent"] = await ledger.dispatch_notifications()
    return summary


async def run_auto_reorders(session_factory) -> dict:
    from inventory.ledger import InventoryLedger

    async with session_factory() as db:
        summary = await InventoryLedger(db).process_auto_reorders()
        await db.commit()
    return summary


@celery_app.task(
    name="workers.inventory.sweep_stock_levels",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def sweep_stock_levels(self, threshold: int | None = None):
    """Raise and resolve stock alerts across the catalog."""
    run_id = self.request.id or "manual"
    logger.info("inventory.sweep_started", run_id=run_id)

    async def _sweep():
        from db.session import worker_session
        from notifications.email import EmailNotifier

        summary = await run_sweep(worker_session, notifier=EmailNotifier(), threshold=threshold)
        summary.update(
            {
                "status": "success",
                "run_id": run_id,
                "completed_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        return summary

    try:
        return asyncio.run(_sweep())
    except Exception as exc:
        logger.error("inventory.sweep_failed", run_id=run_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.inventory.process_auto_reorders",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def process_auto_reorders(self):
    """Restock every open alert configured for auto-reorder."""
    run_id = self.request.id or "manual"

    async def _reorder():
        from db.session import worker_session

        summary = await run_auto_reorders(worker_session)
        logger.info("inventory.auto_reorder_completed", run_id=run_id, **summary)
        return {"status": "success", "run_id": run_id, **summary}

    try:
        return asyncio.run(_reorder())
    except Exception as exc:
        logger.error("inventory.auto_reorder_run_failed", run_id=run_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
