"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "storefront",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.inventory.*": {"queue": "inventory"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # Catch alerts missed when a post-checkout level check failed
        "inventory-level-sweep-15m": {
            "task": "workers.inventory.sweep_stock_levels",
            "schedule": crontab(minute="*/15"),
            "options": {"queue": "inventory"},
        },
        "inventory-auto-reorder-hourly": {
            "task": "workers.inventory.process_auto_reorders",
            "schedule": crontab(minute=5),
            "options": {"queue": "inventory"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
