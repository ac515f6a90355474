from datetime import date, datetime, time, timedelta, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.orm import Session

from roombook.api.deps import get_actor_user_id, get_calendar
from roombook.api.pagination import LimitParam, OffsetParam
from roombook.core.exceptions import BookingValidationError
from roombook.db.models import BookingSource, BookingStatus
from roombook.db.session import get_db
from roombook.schemas.booking import (
    ActionLinkType,
    ActionResultResponse,
    BookingConflictResponse,
    BookingCreateRequest,
    BookingExtendRequest,
    BookingResponse,
    CancelBookingResponse,
    ExtensionAvailabilityResponse,
    QuickBookingRequest,
    RecurringBookingCreateRequest,
    RecurringBookingResponse,
    SkippedOccurrenceResponse,
)
from roombook.services import booking_service
from roombook.services.action_tokens import perform_booking_action
from roombook.services.google_calendar import CalendarClient

router = APIRouter(prefix="/bookings", tags=["bookings"])

PUBLIC_BOOKING_SOURCES = frozenset({BookingSource.WEB, BookingSource.TABLET})


def _ensure_public_source(payload: BookingCreateRequest) -> None:
    if payload.source not in PUBLIC_BOOKING_SOURCES:
        raise BookingValidationError(
            "Bookings can only be created from the web or a room tablet",
            detail={"source": payload.source.value},
        )


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: BookingCreateRequest,
    actor_user_id: int | None = Depends(get_actor_user_id),
    calendar: CalendarClient | None = Depends(get_calendar),
    db: Session = Depends(get_db),
) -> BookingResponse:
    _ensure_public_source(payload)
    booking = booking_service.create_booking(db, payload, actor_user_id=actor_user_id, calendar=calendar)
    return BookingResponse.model_validate(booking)


@router.post("/quick", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_quick_booking(
    payload: QuickBookingRequest,
    device_key: Annotated[str | None, Header(alias="X-Device-Key")] = None,
    calendar: CalendarClient | None = Depends(get_calendar),
    db: Session = Depends(get_db),
) -> BookingResponse:
    booking = booking_service.create_quick_booking(db, payload, device_key=device_key, calendar=calendar)
    return BookingResponse.model_validate(booking)


@router.post("/recurring", response_model=RecurringBookingResponse, status_code=status.HTTP_201_CREATED)
def create_recurring_booking(
    payload: RecurringBookingCreateRequest,
    actor_user_id: int | None = Depends(get_actor_user_id),
    calendar: CalendarClient | None = Depends(get_calendar),
    db: Session = Depends(get_db),
) -> RecurringBookingResponse:
    _ensure_public_source(payload)
    result = booking_service.create_recurring_booking(db, payload, actor_user_id=actor_user_id, calendar=calendar)
    return RecurringBookingResponse(
        series_id=result.parent.id,
        created_count=result.created_count,
        expected_count=result.expected_count,
        bookings=[BookingResponse.model_validate(booking) for booking in result.bookings],
        skipped=[
            SkippedOccurrenceResponse(
                start_time=item.slot.start_time,
                end_time=item.slot.end_time,
                conflict=BookingConflictResponse.from_conflict(item.conflict),
            )
            for item in result.skipped
        ],
    )


@router.get("", response_model=list[BookingResponse], status_code=status.HTTP_200_OK)
def list_bookings(
    room_id: int | None = Query(default=None),
    host_user_id: int | None = Query(default=None),
    status_filter: BookingStatus | None = Query(default=None, alias="status"),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    limit: LimitParam = 50,
    offset: OffsetParam = 0,
    db: Session = Depends(get_db),
) -> list[BookingResponse]:
    start_from = datetime.combine(date_from, time.min, tzinfo=timezone.utc) if date_from else None
    start_to = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc) if date_to else None
    bookings = booking_service.list_bookings(
        db,
        room_id=room_id,
        host_user_id=host_user_id,
        status=status_filter,
        start_from=start_from,
        start_to=start_to,
        limit=limit,
        offset=offset,
    )
    return [BookingResponse.model_validate(booking) for booking in bookings]


@router.get("/action", response_model=ActionResultResponse, status_code=status.HTTP_200_OK)
def run_action_link(
    token: str = Query(min_length=1),
    action: ActionLinkType = Query(),
    calendar: CalendarClient | None = Depends(get_calendar),
    db: Session = Depends(get_db),
) -> ActionResultResponse:
    result = perform_booking_action(db, token, action, calendar=calendar)
    return ActionResultResponse(
        action=result.action,
        message=result.message,
        booking=BookingResponse.model_validate(result.booking),
    )


@router.get("/{booking_id}", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def get_booking_by_id(booking_id: int, db: Session = Depends(get_db)) -> BookingResponse:
    return BookingResponse.model_validate(booking_service.get_booking(db, booking_id))


@router.post("/{booking_id}/cancel", response_model=CancelBookingResponse, status_code=status.HTTP_200_OK)
def cancel_booking(
    booking_id: int,
    actor_user_id: int | None = Depends(get_actor_user_id),
    calendar: CalendarClient | None = Depends(get_calendar),
    db: Session = Depends(get_db),
) -> CancelBookingResponse:
    result = booking_service.cancel_booking(db, booking_id, actor_user_id=actor_user_id, calendar=calendar)
    return CancelBookingResponse(
        booking=BookingResponse.model_validate(result.booking),
        already_cancelled=result.already_cancelled,
    )


@router.post("/{booking_id}/checkin", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def check_in_booking(
    booking_id: int,
    actor_user_id: int | None = Depends(get_actor_user_id),
    db: Session = Depends(get_db),
) -> BookingResponse:
    booking = booking_service.check_in_booking(db, booking_id, actor_user_id=actor_user_id)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/end", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def end_booking_early(
    booking_id: int,
    actor_user_id: int | None = Depends(get_actor_user_id),
    calendar: CalendarClient | None = Depends(get_calendar),
    db: Session = Depends(get_db),
) -> BookingResponse:
    booking = booking_service.end_booking_early(db, booking_id, actor_user_id=actor_user_id, calendar=calendar)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/extend", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def extend_booking(
    booking_id: int,
    payload: BookingExtendRequest,
    actor_user_id: int | None = Depends(get_actor_user_id),
    calendar: CalendarClient | None = Depends(get_calendar),
    db: Session = Depends(get_db),
) -> BookingResponse:
    booking = booking_service.extend_booking(
        db,
        booking_id,
        payload.additional_minutes,
        actor_user_id=actor_user_id,
        calendar=calendar,
    )
    return BookingResponse.model_validate(booking)


@router.get(
    "/{booking_id}/extension-availability",
    response_model=ExtensionAvailabilityResponse,
    status_code=status.HTTP_200_OK,
)
def get_extension_availability(
    booking_id: int,
    minutes: int = Query(),
    db: Session = Depends(get_db),
) -> ExtensionAvailabilityResponse:
    availability = booking_service.check_extension_availability(db, booking_id, minutes)
    return ExtensionAvailabilityResponse(
        can_extend=availability.can_extend,
        new_end_time=availability.new_end_time,
        conflict=BookingConflictResponse.from_conflict(availability.conflict) if availability.conflict else None,
    )
