from roombook.db.session import SessionLocal
from roombook.services.booking_service import end_elapsed_bookings, mark_no_shows
from roombook.tasks.celery_app import celery_app


@celery_app.task(name="bookings.mark_no_shows")
def mark_no_shows_task() -> dict[str, int]:
    db = SessionLocal()
    try:
        result = mark_no_shows(db=db)
        return {"updated": result.updated_count, "grace_minutes": result.grace_minutes}
    finally:
        db.close()


@celery_app.task(name="bookings.end_elapsed")
def end_elapsed_bookings_task() -> dict[str, int]:
    db = SessionLocal()
    try:
        ended_count = end_elapsed_bookings(db=db)
        return {"ended": ended_count}
    finally:
        db.close()
