from roombook.db.session import SessionLocal
from roombook.services.google_calendar import get_calendar_client
from roombook.services.google_sync import sync_all_rooms
from roombook.tasks.celery_app import celery_app


@celery_app.task(name="bookings.sync_google_calendars")
def sync_google_calendars_task() -> dict[str, int]:
    calendar = get_calendar_client()
    if calendar is None:
        return {"rooms": 0, "synced": 0, "failed": 0}

    db = SessionLocal()
    try:
        result = sync_all_rooms(db=db, calendar=calendar)
        return {"rooms": result.rooms, "synced": result.synced, "failed": len(result.failed_room_ids)}
    finally:
        db.close()
