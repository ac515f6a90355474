from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from roombook.core.clock import utcnow
from roombook.core.config import settings
from roombook.core.exceptions import NotFoundError
from roombook.db.models import Booking, BookingStatus, Room
from roombook.services.google_calendar import CalendarClient
from roombook.services.google_sync import sync_room_before_read

UPCOMING_LIMIT = 5


class RoomUiState(str, Enum):
    FREE = "free"
    CHECKIN = "checkin"
    BUSY = "busy"


@dataclass(frozen=True)
class RoomStatusSnapshot:
    room: Room
    current_booking: Booking | None
    next_bookings: list[Booking]
    available_until: datetime | None
    ui_state: RoomUiState

    @property
    def is_occupied(self) -> bool:
        return self.current_booking is not None


def get_room_status(
    db: Session,
    room_id: int,
    *,
    now: datetime | None = None,
    calendar: CalendarClient | None = None,
) -> RoomStatusSnapshot:
    """What a room tablet shows: the running meeting, what is next, and the colour state.

    The room is busy only while a booking is checked in. It shows the check-in
    state from ``checkin_early_minutes`` before the next start until the
    no-show grace period runs out.
    """
    current_time = now or utcnow()
    room = db.scalar(select(Room).options(joinedload(Room.location)).where(Room.id == room_id))
    if room is None:
        raise NotFoundError("Room not found", detail={"room_id": room_id})

    sync_room_before_read(db, room_id, now=current_time, calendar=calendar)

    current_booking = db.scalar(
        select(Booking)
        .options(joinedload(Booking.host))
        .where(Booking.room_id == room_id, Booking.status == BookingStatus.IN_PROGRESS.value)
        .order_by(Booking.start_time)
        .limit(1)
    )
    window_start = current_time - timedelta(minutes=settings.no_show_grace_minutes)
    next_bookings = list(
        db.scalars(
            select(Booking)
            .options(joinedload(Booking.host))
            .where(
                Booking.room_id == room_id,
                Booking.status == BookingStatus.SCHEDULED.value,
                Booking.start_time >= window_start,
                Booking.end_time > current_time,
            )
            .order_by(Booking.start_time, Booking.id)
            .limit(UPCOMING_LIMIT)
        ).all()
    )

    available_until = None
    ui_state = RoomUiState.BUSY if current_booking else RoomUiState.FREE
    if current_booking is None and next_bookings:
        upcoming = next_bookings[0]
        available_until = upcoming.start_time
        if upcoming.start_time - timedelta(minutes=settings.checkin_early_minutes) <= current_time:
            ui_state = RoomUiState.CHECKIN

    return RoomStatusSnapshot(
        room=room,
        current_booking=current_booking,
        next_bookings=next_bookings,
        available_until=available_until,
        ui_state=ui_state,
    )
