from datetime import date, datetime, time, timedelta, timezone

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from roombook.api.deps import get_calendar
from roombook.api.pagination import LimitParam, OffsetParam
from roombook.db.models import Booking
from roombook.db.session import get_db
from roombook.schemas.booking import BookingResponse
from roombook.schemas.room import RoomBookingSummary, RoomStatusResponse
from roombook.services.booking_service import list_room_bookings
from roombook.services.google_calendar import CalendarClient
from roombook.services.room_status import get_room_status

router = APIRouter(prefix="/rooms", tags=["rooms"])


def _summary(booking: Booking) -> RoomBookingSummary:
    return RoomBookingSummary(
        id=booking.id,
        title=booking.title,
        host_name=booking.host.display_name if booking.host else None,
        start_time=booking.start_time,
        end_time=booking.end_time,
    )


@router.get("/{room_id}/bookings", response_model=list[BookingResponse], status_code=status.HTTP_200_OK)
def list_bookings_for_room(
    room_id: int,
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    include_cancelled: bool = Query(default=False),
    limit: LimitParam = 100,
    offset: OffsetParam = 0,
    calendar: CalendarClient | None = Depends(get_calendar),
    db: Session = Depends(get_db),
) -> list[BookingResponse]:
    start_from = datetime.combine(date_from, time.min, tzinfo=timezone.utc) if date_from else None
    start_to = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc) if date_to else None
    bookings = list_room_bookings(
        db,
        room_id,
        start_from=start_from,
        start_to=start_to,
        include_cancelled=include_cancelled,
        limit=limit,
        offset=offset,
        calendar=calendar,
    )
    return [BookingResponse.model_validate(booking) for booking in bookings]


@router.get("/{room_id}/status", response_model=RoomStatusResponse, status_code=status.HTTP_200_OK)
def get_status_for_room(
    room_id: int,
    calendar: CalendarClient | None = Depends(get_calendar),
    db: Session = Depends(get_db),
) -> RoomStatusResponse:
    snapshot = get_room_status(db, room_id, calendar=calendar)
    return RoomStatusResponse(
        room_id=snapshot.room.id,
        room_name=snapshot.room.name,
        location_name=snapshot.room.location.name,
        capacity=snapshot.room.capacity,
        is_occupied=snapshot.is_occupied,
        current_booking=_summary(snapshot.current_booking) if snapshot.current_booking else None,
        next_bookings=[_summary(booking) for booking in snapshot.next_bookings],
        available_until=snapshot.available_until,
        ui_state=snapshot.ui_state,
    )
