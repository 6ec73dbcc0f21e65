"""
Celery configuration for background tasks
"""
from celery import Celery
from ledger_sync.core.config import settings
import logging

logger = logging.getLogger(__name__)

redis_url = settings.redis_url

# Create Celery instance
celery_app = Celery(
    "ledger_sync",
    broker=redis_url,
    backend=redis_url,
    include=[
        "ledger_sync.modules.sync.tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Result backend settings
    result_expires=3600,  # 1 hour

    task_routes={
        "ledger_sync.modules.sync.tasks.*": {"queue": "sync"},
    },

    # Beat schedule for periodic tasks
    beat_schedule={
        "sync-with-erp": {
            "task": "ledger_sync.modules.sync.tasks.run_sync",
            "schedule": float(settings.SYNC_INTERVAL_SECONDS),
        },
    }
)

if __name__ == "__main__":
    celery_app.start()
