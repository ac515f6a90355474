from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from roombook.db.models import Booking, BookingAction, BookingActivity


def record_activity(
    db: Session,
    booking: Booking,
    action: BookingAction,
    *,
    now: datetime,
    actor_user_id: int | None = None,
    details: dict[str, Any] | None = None,
) -> BookingActivity:
    """Append an audit entry; committed together with the caller's change."""
    activity = BookingActivity(
        booking=booking,
        action=action.value,
        actor_user_id=actor_user_id,
        details=details or {},
        created_at=now,
    )
    db.add(activity)
    return activity
