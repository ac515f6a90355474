import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from roombook.core.clock import utcnow
from roombook.core.config import settings
from roombook.core.exceptions import ConflictError, InvalidStateError, TokenExpiredError
from roombook.core.security import generate_action_token
from roombook.db.models import Booking
from roombook.schemas.booking import ActionLinkType
from roombook.services.booking_service import end_booking_early, extend_booking, get_booking
from roombook.services.booking_state import is_terminal
from roombook.services.google_calendar import CalendarClient

logger = logging.getLogger(__name__)

TOKEN_UNUSABLE_DETAIL = "This link has expired or was already used"

__all__ = [
    "ActionResult",
    "consume_action_token",
    "generate_action_token",
    "get_booking_by_action_token",
    "invalidate_action_token",
    "mark_overdue_reminder_sent",
    "perform_booking_action",
    "restore_action_token",
]


@dataclass(frozen=True)
class ActionResult:
    action: ActionLinkType
    booking: Booking
    message: str


def _issued_after(now: datetime) -> datetime:
    return now - timedelta(minutes=settings.action_token_ttl_minutes)


def mark_overdue_reminder_sent(db: Session, booking_id: int, token: str, now: datetime | None = None) -> Booking:
    """Attach the emailed token and flag the reminder so the booking is not notified twice."""
    current_time = now or utcnow()
    booking = get_booking(db, booking_id)
    booking.action_token = token
    booking.action_token_issued_at = current_time
    booking.overdue_reminder_sent_at = current_time
    db.commit()
    return booking


def get_booking_by_action_token(db: Session, token: str | None, now: datetime | None = None) -> Booking | None:
    """Booking the token acts on, or None when it is unknown, used, expired or moot."""
    if not token:
        return None
    current_time = now or utcnow()
    booking = db.scalar(select(Booking).where(Booking.action_token == token))
    if booking is None or is_terminal(booking.status):
        return None
    if booking.action_token_issued_at is None or booking.action_token_issued_at <= _issued_after(current_time):
        return None
    return booking


def invalidate_action_token(db: Session, booking_id: int) -> None:
    db.execute(
        update(Booking)
        .where(Booking.id == booking_id)
        .values(action_token=None, action_token_issued_at=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def consume_action_token(db: Session, token: str, now: datetime | None = None) -> Booking | None:
    """Claim the token; of any number of concurrent callers at most one gets the booking."""
    booking = get_booking_by_action_token(db, token, now)
    if booking is None:
        return None

    claimed = db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.action_token == token)
        .values(action_token=None)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        db.rollback()
        return None
    db.commit()
    db.refresh(booking)
    return booking


def restore_action_token(db: Session, booking_id: int, token: str) -> None:
    db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.action_token.is_(None))
        .values(action_token=token)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def perform_booking_action(
    db: Session,
    token: str,
    action: ActionLinkType,
    *,
    now: datetime | None = None,
    calendar: CalendarClient | None = None,
) -> ActionResult:
    """Run the extend or release action an overdue-reminder link grants.

    A blocked extension leaves the token usable so the recipient can try the
    other action; any completed action burns it.
    """
    current_time = now or utcnow()
    booking = consume_action_token(db, token, current_time)
    if booking is None:
        stale = db.scalar(select(Booking).where(Booking.action_token == token))
        if stale is not None and is_terminal(stale.status):
            raise InvalidStateError(
                f"Booking is already {stale.status}",
                detail={"booking_id": stale.id, "status": stale.status},
            )
        raise TokenExpiredError(TOKEN_UNUSABLE_DETAIL)

    booking_id = booking.id
    actor_user_id = booking.host_user_id
    try:
        if action is ActionLinkType.EXTEND:
            booking = extend_booking(
                db,
                booking_id,
                settings.action_extend_minutes,
                actor_user_id=actor_user_id,
                now=current_time,
                calendar=calendar,
            )
            message = f"Booking extended until {booking.end_time.isoformat()}"
        else:
            booking = end_booking_early(
                db, booking_id, actor_user_id=actor_user_id, now=current_time, calendar=calendar
            )
            message = "Room released"
    except ConflictError:
        restore_action_token(db, booking_id, token)
        logger.info("action_token_restored booking_id=%s action=%s", booking_id, action.value)
        raise

    invalidate_action_token(db, booking_id)
    db.refresh(booking)
    logger.info("action_token_used booking_id=%s action=%s", booking_id, action.value)
    return ActionResult(action=action, booking=booking, message=message)
