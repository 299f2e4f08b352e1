"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab

from app.core.config import settings
from app.core.logging_config import setup_logging

setup_logging("Worker")

# Create Celery instance
celery_app = Celery(
    "chat_relay",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.tasks.quota_tasks"],
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes
    task_soft_time_limit=8 * 60,  # 8 minutes
    worker_prefetch_multiplier=1,
    worker_hijack_root_logger=False,
)

# Configure Celery Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "reset-daily-quotas": {
        "task": "app.tasks.quota_tasks.reset_daily_quotas_task",
        "schedule": crontab(hour=settings.quota_reset_hour, minute=settings.quota_reset_minute),
        "options": {"expires": 3600},  # Task expires after 1 hour
    },
}

celery_app.conf.task_routes = {
    "app.tasks.quota_tasks.*": {"queue": "quotas"},
}
