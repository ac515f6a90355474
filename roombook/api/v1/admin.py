from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from roombook.api.deps import get_actor_user_id, get_calendar
from roombook.api.pagination import LimitParam, OffsetParam
from roombook.db.models import BookingSource
from roombook.db.session import get_db
from roombook.schemas.booking import (
    BookingCreateRequest,
    BookingResponse,
    BookingStatusOverrideRequest,
    CancelBookingResponse,
    DeleteBookingResponse,
    GoogleSyncAllResponse,
    GoogleSyncRequest,
    GoogleSyncResponse,
    NoShowScanResponse,
    SeriesCancelResponse,
    SeriesDetailResponse,
    SeriesSummaryResponse,
)
from roombook.services import booking_service
from roombook.services.google_calendar import CalendarClient
from roombook.services.google_sync import SyncResult, sync_all_rooms, sync_room_from_google

router = APIRouter(prefix="/admin", tags=["admin"])


def _sync_response(result: SyncResult) -> GoogleSyncResponse:
    return GoogleSyncResponse(
        room_id=result.room_id,
        synced=result.synced,
        created=result.created,
        updated=result.updated,
        cancelled=result.cancelled,
        linked=result.linked,
        suppressed=result.suppressed,
        skip_reason=result.skip_reason,
    )


def _series_summary(summary: booking_service.SeriesSummary) -> SeriesSummaryResponse:
    return SeriesSummaryResponse(
        series_id=summary.root.id,
        title=summary.root.title,
        room_id=summary.root.room_id,
        recurrence_rule=summary.root.recurrence_rule,
        recurrence_end_date=summary.root.recurrence_end_date,
        occurrence_count=summary.occurrence_count,
        next_occurrence=summary.next_occurrence,
    )


@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_admin_booking(
    payload: BookingCreateRequest,
    actor_user_id: int | None = Depends(get_actor_user_id),
    calendar: CalendarClient | None = Depends(get_calendar),
    db: Session = Depends(get_db),
) -> BookingResponse:
    admin_payload = payload.model_copy(update={"source": BookingSource.ADMIN})
    booking = booking_service.create_booking(db, admin_payload, actor_user_id=actor_user_id, calendar=calendar)
    return BookingResponse.model_validate(booking)


@router.post("/bookings/no-show-scan", response_model=NoShowScanResponse, status_code=status.HTTP_200_OK)
def run_no_show_scan(db: Session = Depends(get_db)) -> NoShowScanResponse:
    result = booking_service.mark_no_shows(db)
    return NoShowScanResponse(updated_count=result.updated_count, grace_minutes=result.grace_minutes)


@router.post(
    "/bookings/sync-from-google",
    response_model=GoogleSyncResponse | GoogleSyncAllResponse,
    status_code=status.HTTP_200_OK,
)
def sync_bookings_from_google(
    payload: GoogleSyncRequest | None = None,
    calendar: CalendarClient | None = Depends(get_calendar),
    db: Session = Depends(get_db),
) -> GoogleSyncResponse | GoogleSyncAllResponse:
    if payload is not None and payload.room_id is not None:
        result = sync_room_from_google(db, payload.room_id, force=True, calendar=calendar)
        return _sync_response(result)

    summary = sync_all_rooms(db, force=True, calendar=calendar)
    return GoogleSyncAllResponse(
        processed=summary.rooms,
        synced=summary.synced,
        results=[_sync_response(result) for result in summary.results],
        failed_room_ids=summary.failed_room_ids,
    )


@router.patch("/bookings/{booking_id}/status", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def override_status(
    booking_id: int,
    payload: BookingStatusOverrideRequest,
    actor_user_id: int | None = Depends(get_actor_user_id),
    db: Session = Depends(get_db),
) -> BookingResponse:
    booking = booking_service.override_booking_status(db, booking_id, payload.status, actor_user_id=actor_user_id)
    return BookingResponse.model_validate(booking)


@router.delete("/bookings/{booking_id}", response_model=DeleteBookingResponse, status_code=status.HTTP_200_OK)
def delete_booking(
    booking_id: int,
    calendar: CalendarClient | None = Depends(get_calendar),
    db: Session = Depends(get_db),
) -> DeleteBookingResponse:
    deleted = booking_service.delete_booking(db, booking_id, calendar=calendar)
    return DeleteBookingResponse(deleted_count=deleted)


@router.get("/recurring", response_model=list[SeriesSummaryResponse], status_code=status.HTTP_200_OK)
def list_recurring_series(
    room_id: int | None = Query(default=None),
    limit: LimitParam = 50,
    offset: OffsetParam = 0,
    db: Session = Depends(get_db),
) -> list[SeriesSummaryResponse]:
    series = booking_service.list_recurring_series(db, room_id=room_id, limit=limit, offset=offset)
    return [_series_summary(summary) for summary in series]


@router.get("/recurring/{series_id}", response_model=SeriesDetailResponse, status_code=status.HTTP_200_OK)
def get_recurring_series(series_id: int, db: Session = Depends(get_db)) -> SeriesDetailResponse:
    summary = booking_service.get_recurring_series(db, series_id)
    return SeriesDetailResponse(
        **_series_summary(summary).model_dump(),
        occurrences=[BookingResponse.model_validate(booking) for booking in summary.occurrences],
    )


@router.delete("/recurring/{series_id}", response_model=SeriesCancelResponse, status_code=status.HTTP_200_OK)
def cancel_recurring_series(
    series_id: int,
    actor_user_id: int | None = Depends(get_actor_user_id),
    calendar: CalendarClient | None = Depends(get_calendar),
    db: Session = Depends(get_db),
) -> SeriesCancelResponse:
    cancelled = booking_service.cancel_recurring_series(
        db, series_id, actor_user_id=actor_user_id, calendar=calendar
    )
    return SeriesCancelResponse(series_id=series_id, cancelled_count=cancelled)


@router.delete(
    "/recurring/{series_id}/occurrences/{occurrence_id}",
    response_model=CancelBookingResponse,
    status_code=status.HTTP_200_OK,
)
def cancel_series_occurrence(
    series_id: int,
    occurrence_id: int,
    actor_user_id: int | None = Depends(get_actor_user_id),
    calendar: CalendarClient | None = Depends(get_calendar),
    db: Session = Depends(get_db),
) -> CancelBookingResponse:
    result = booking_service.cancel_series_occurrence(
        db, series_id, occurrence_id, actor_user_id=actor_user_id, calendar=calendar
    )
    return CancelBookingResponse(
        booking=BookingResponse.model_validate(result.booking),
        already_cancelled=result.already_cancelled,
    )
