from roombook.db.session import SessionLocal
from roombook.services.notifications import send_overdue_reminders
from roombook.tasks.celery_app import celery_app


@celery_app.task(name="bookings.send_overdue_reminders")
def send_overdue_reminders_task() -> dict[str, int]:
    db = SessionLocal()
    try:
        result = send_overdue_reminders(db=db)
        return {"processed": result.processed, "sent": result.sent, "failed": result.failed}
    finally:
        db.close()
