from datetime import timedelta
import os

from celery import Celery

from roombook.core.config import settings

broker_url = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")
result_backend = os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/1")

celery_app = Celery(
    "roombook",
    broker=broker_url,
    backend=result_backend,
    include=["roombook.tasks.lifecycle", "roombook.tasks.reminders", "roombook.tasks.google_sync"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "mark-no-show-bookings": {
            "task": "bookings.mark_no_shows",
            "schedule": timedelta(minutes=settings.celery_no_show_interval_minutes),
        },
        "end-elapsed-bookings": {
            "task": "bookings.end_elapsed",
            "schedule": timedelta(minutes=settings.celery_auto_end_interval_minutes),
        },
        "send-overdue-reminders": {
            "task": "bookings.send_overdue_reminders",
            "schedule": timedelta(minutes=settings.celery_overdue_reminder_interval_minutes),
        },
        "sync-google-calendars": {
            "task": "bookings.sync_google_calendars",
            "schedule": timedelta(minutes=settings.celery_google_sync_interval_minutes),
        },
    },
)
