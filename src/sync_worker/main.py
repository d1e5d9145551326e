"""Celery application for the sync worker."""

from celery import Celery
from celery.schedules import crontab

from catalog_sync.config import get_settings
from catalog_sync.infrastructure.logging import configure_logging

settings = get_settings()
configure_logging()

app = Celery(
    "sync_worker",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=[
        "sync_worker.tasks.sync_catalog",
    ],
)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,  # 1 hour
    task_soft_time_limit=3300,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="sync",
    task_routes={
        "sync_worker.tasks.*": {"queue": "sync"},
    },
)


def build_beat_schedule(polling_enabled: bool, full_sync_hour: int, stock_minute: int) -> dict:
    """Scheduled polling complements webhooks; disabled unless configured."""
    if not polling_enabled:
        return {}
    return {
        # Full reconciliation once a day
        "full-sync": {
            "task": "sync_worker.tasks.sync_catalog.run_full_sync",
            "schedule": crontab(minute=0, hour=full_sync_hour),
        },
        # Stock poll every hour
        "sync-stock-levels": {
            "task": "sync_worker.tasks.sync_catalog.sync_stock_levels",
            "schedule": crontab(minute=stock_minute),
        },
    }


app.conf.beat_schedule = build_beat_schedule(
    settings.polling_enabled, settings.full_sync_cron_hour, settings.stock_sync_cron_minute
)


def run() -> None:
    """Run the Celery worker."""
    app.worker_main(["worker", "--loglevel=info", "-Q", "sync"])


if __name__ == "__main__":
    run()
