import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import wraps
from typing import Any, TypeVar

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, joinedload

from roombook.core.clock import utcnow
from roombook.core.config import settings
from roombook.core.exceptions import (
    BookingError,
    BookingValidationError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from roombook.core.metrics import BOOKING_OPERATIONS
from roombook.core.security import verify_device_key
from roombook.db.models import (
    Booking,
    BookingAction,
    BookingSource,
    BookingStatus,
    DeletedGoogleEvent,
    Room,
    RoomStatus,
    User,
    UserStatus,
)
from roombook.schemas.booking import BookingCreateRequest, QuickBookingRequest, RecurringBookingCreateRequest
from roombook.schemas.calendar import PRIVATE_BOOKING_ID_KEY
from roombook.services.activity import record_activity
from roombook.services.booking_state import apply_transition, ensure_transition, is_terminal, status_of
from roombook.services.conflicts import (
    ROOM_ALREADY_BOOKED_DETAIL,
    BookingConflict,
    booking_write_guard,
    find_conflict,
    find_conflicting_bookings,
    lock_room,
)
from roombook.services.google_calendar import CalendarClient, resolve_room_calendar_id
from roombook.services.google_sync import sync_room_before_read
from roombook.services.recurrence import Slot, expand_recurrence
from roombook.services.users import get_active_user_by_email

logger = logging.getLogger(__name__)

EXTENSION_BLOCKED_DETAIL = "Room is not available for the extension"
# Shortest interval a truncated booking keeps, so end_time stays after start_time.
MIN_BOOKING_SPAN = timedelta(minutes=1)

F = TypeVar("F", bound=Callable[..., Any])


def _tracked(operation: str) -> Callable[[F], F]:
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                result = func(*args, **kwargs)
            except BookingError as exc:
                BOOKING_OPERATIONS.labels(operation=operation, outcome=exc.kind.value).inc()
                raise
            BOOKING_OPERATIONS.labels(operation=operation, outcome="ok").inc()
            return result

        return wrapper  # type: ignore[return-value]

    return decorator


@dataclass
class CancelResult:
    booking: Booking
    already_cancelled: bool


@dataclass(frozen=True)
class SkippedOccurrence:
    slot: Slot
    conflict: BookingConflict


@dataclass
class RecurringBookingResult:
    parent: Booking
    occurrences: list[Booking]
    skipped: list[SkippedOccurrence]
    expected_count: int

    @property
    def created_count(self) -> int:
        return 1 + len(self.occurrences)

    @property
    def bookings(self) -> list[Booking]:
        return [self.parent, *self.occurrences]


@dataclass(frozen=True)
class ExtensionAvailability:
    can_extend: bool
    new_end_time: datetime
    conflict: BookingConflict | None = None


@dataclass(frozen=True)
class NoShowScanResult:
    updated_count: int
    grace_minutes: int


@dataclass(frozen=True)
class OverdueBooking:
    booking: Booking
    recipient_email: str
    recipient_name: str
    room_name: str
    location_name: str
    timezone: str


@dataclass
class SeriesSummary:
    root: Booking
    occurrence_count: int
    next_occurrence: datetime | None
    occurrences: list[Booking] = field(default_factory=list)


def get_booking(db: Session, booking_id: int) -> Booking:
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found", detail={"booking_id": booking_id})
    return booking


def _get_room(db: Session, room_id: int) -> Room:
    room = db.get(Room, room_id)
    if room is None:
        raise NotFoundError("Room not found", detail={"room_id": room_id})
    return room


def _ensure_room_bookable(room: Room) -> None:
    if room.status != RoomStatus.ACTIVE.value:
        raise BookingValidationError(
            "Room is not available for booking",
            detail={"room_id": room.id, "room_status": room.status},
        )


def _max_duration_minutes(room: Room) -> int:
    return room.max_booking_duration_minutes or settings.max_booking_duration_minutes


def _validate_window(
    room: Room,
    start_time: datetime,
    end_time: datetime,
    source: BookingSource,
    now: datetime,
) -> None:
    if end_time <= start_time:
        raise BookingValidationError("end_time must be after start_time")
    if source is not BookingSource.ADMIN and end_time <= now:
        raise BookingValidationError("Booking must end in the future")
    max_minutes = _max_duration_minutes(room)
    if end_time - start_time > timedelta(minutes=max_minutes):
        raise BookingValidationError(
            f"Booking duration exceeds maximum of {max_minutes} minutes",
            detail={"max_duration_minutes": max_minutes},
        )


def _resolve_host(db: Session, host_user_id: int | None, organizer_email: str | None) -> User | None:
    if host_user_id is None:
        return get_active_user_by_email(db, organizer_email)
    host = db.get(User, host_user_id)
    if host is None or host.status != UserStatus.ACTIVE.value:
        raise NotFoundError("Host user not found", detail={"host_user_id": host_user_id})
    return host


def _remember_deleted_event(db: Session, booking: Booking, now: datetime) -> None:
    if not booking.google_event_id:
        return
    exists = db.scalar(
        select(DeletedGoogleEvent.id).where(DeletedGoogleEvent.google_event_id == booking.google_event_id)
    )
    if exists is None:
        db.add(
            DeletedGoogleEvent(
                google_event_id=booking.google_event_id,
                google_calendar_id=booking.google_calendar_id,
                created_at=now,
            )
        )


def _unique_emails(emails: list[str]) -> list[str]:
    seen: set[str] = set()
    unique = []
    for email in emails:
        key = email.lower()
        if key not in seen:
            seen.add(key)
            unique.append(email)
    return unique


def _truncate_end(booking: Booking, now: datetime) -> None:
    if booking.end_time > now:
        booking.end_time = max(now, booking.start_time + MIN_BOOKING_SPAN)


def _event_body(booking: Booking, room: Room) -> dict[str, Any]:
    timezone = room.location.timezone if room.location else "UTC"
    body: dict[str, Any] = {
        "summary": booking.title,
        "description": booking.description or "",
        "start": {"dateTime": booking.start_time.isoformat(), "timeZone": timezone},
        "end": {"dateTime": booking.end_time.isoformat(), "timeZone": timezone},
        "extendedProperties": {"private": {PRIVATE_BOOKING_ID_KEY: str(booking.id)}},
    }
    attendees = []
    if booking.organizer_email:
        attendees.append({"email": booking.organizer_email})
    for email in booking.attendee_emails or []:
        if email.lower() != (booking.organizer_email or "").lower():
            attendees.append({"email": email})
    if room.google_resource_id and "@" in room.google_resource_id:
        attendees.append({"email": room.google_resource_id, "resource": True})
    if attendees:
        body["attendees"] = attendees
    return body


def _push_to_google(db: Session, bookings: list[Booking], calendar: CalendarClient | None) -> None:
    """Create Google events for freshly created local bookings; failures only log."""
    if calendar is None:
        return
    linked = False
    for booking in bookings:
        calendar_id = resolve_room_calendar_id(booking.room)
        if calendar_id is None:
            return
        try:
            event = calendar.create_event(calendar_id, _event_body(booking, booking.room))
        except BookingError as exc:
            logger.warning("google_event_create_failed booking_id=%s error=%s", booking.id, exc.message)
            continue
        if event.id:
            booking.google_event_id = event.id
            booking.google_calendar_id = calendar_id
            booking.last_synced_at = booking.updated_at
            linked = True
    if linked:
        db.commit()


def _patch_google_times(booking: Booking, calendar: CalendarClient | None) -> None:
    if calendar is None or not booking.google_event_id or not booking.google_calendar_id:
        return
    body = _event_body(booking, booking.room)
    try:
        calendar.patch_event(
            booking.google_calendar_id,
            booking.google_event_id,
            {"start": body["start"], "end": body["end"]},
        )
    except BookingError as exc:
        logger.warning("google_event_patch_failed booking_id=%s error=%s", booking.id, exc.message)


def _delete_google_events(events: list[tuple[str, str]], calendar: CalendarClient | None) -> None:
    if calendar is None:
        return
    for calendar_id, event_id in events:
        try:
            calendar.delete_event(calendar_id, event_id)
        except BookingError as exc:
            logger.warning("google_event_delete_failed google_event_id=%s error=%s", event_id, exc.message)


def _google_ref(booking: Booking) -> tuple[str, str] | None:
    if booking.google_event_id and booking.google_calendar_id:
        return booking.google_calendar_id, booking.google_event_id
    return None


@_tracked("create")
def create_booking(
    db: Session,
    payload: BookingCreateRequest,
    *,
    actor_user_id: int | None = None,
    now: datetime | None = None,
    calendar: CalendarClient | None = None,
) -> Booking:
    current_time = now or utcnow()
    room = _get_room(db, payload.room_id)
    _ensure_room_bookable(room)
    _validate_window(room, payload.start_time, payload.end_time, payload.source, current_time)
    host = _resolve_host(db, payload.host_user_id, payload.organizer_email)

    with booking_write_guard(db):
        lock_room(db, room.id)
        conflict = find_conflict(db, room.id, payload.start_time, payload.end_time)
        if conflict is not None:
            raise ConflictError(ROOM_ALREADY_BOOKED_DETAIL, conflict)

        booking = Booking(
            room_id=room.id,
            host_user_id=host.id if host else None,
            organizer_email=payload.organizer_email or (host.email if host else None),
            attendee_emails=_unique_emails(payload.attendee_emails),
            title=payload.title,
            description=payload.description,
            start_time=payload.start_time,
            end_time=payload.end_time,
            status=BookingStatus.SCHEDULED.value,
            source=payload.source.value,
            created_at=current_time,
            updated_at=current_time,
        )
        if payload.source is BookingSource.TABLET and payload.start_time <= current_time:
            booking.status = BookingStatus.IN_PROGRESS.value
            booking.check_in_time = current_time
        db.add(booking)
        db.flush()
        record_activity(
            db,
            booking,
            BookingAction.CREATED,
            now=current_time,
            actor_user_id=actor_user_id,
            details={"source": booking.source},
        )
        db.commit()

    db.refresh(booking)
    logger.info(
        "booking_created booking_id=%s room_id=%s source=%s status=%s",
        booking.id,
        booking.room_id,
        booking.source,
        booking.status,
    )
    _push_to_google(db, [booking], calendar)
    return booking


@_tracked("quick_create")
def create_quick_booking(
    db: Session,
    payload: QuickBookingRequest,
    *,
    device_key: str | None = None,
    now: datetime | None = None,
    calendar: CalendarClient | None = None,
) -> Booking:
    """Book the room from now for ``duration_minutes``, as a tablet walk-up.

    The end is clipped to the start of the next booking; a booking already
    running makes the request fail with the time the room frees up.
    """
    current_time = now or utcnow()
    room = _get_room(db, payload.room_id)
    if not verify_device_key(room.device_key, device_key):
        raise ForbiddenError("Invalid device key", detail={"room_id": room.id})
    if not room.allow_walk_up_booking:
        raise ForbiddenError("Walk-up bookings are not allowed for this room", detail={"room_id": room.id})
    _ensure_room_bookable(room)

    max_minutes = min(settings.max_quick_booking_minutes, _max_duration_minutes(room))
    if payload.duration_minutes > max_minutes:
        raise BookingValidationError(
            f"Quick booking duration exceeds maximum of {max_minutes} minutes",
            detail={"max_duration_minutes": max_minutes},
        )
    host = _resolve_host(db, payload.host_user_id, payload.organizer_email)

    start_time = current_time
    end_time = current_time + timedelta(minutes=payload.duration_minutes)
    with booking_write_guard(db):
        lock_room(db, room.id)
        conflicts = find_conflicting_bookings(db, room.id, start_time, end_time)
        if conflicts:
            blocking = BookingConflict.from_booking(conflicts[0])
            if blocking.start_time <= start_time:
                raise ConflictError(f"Room is occupied until {blocking.end_time.isoformat()}", blocking)
            end_time = blocking.start_time

        booking = Booking(
            room_id=room.id,
            host_user_id=host.id if host else None,
            organizer_email=payload.organizer_email or (host.email if host else None),
            title=payload.title,
            description=f"Quick booking from {room.name}",
            start_time=start_time,
            end_time=end_time,
            status=BookingStatus.IN_PROGRESS.value,
            source=BookingSource.TABLET.value,
            check_in_time=current_time,
            created_at=current_time,
            updated_at=current_time,
        )
        db.add(booking)
        db.flush()
        record_activity(
            db,
            booking,
            BookingAction.CREATED,
            now=current_time,
            details={
                "source": booking.source,
                "duration_minutes": payload.duration_minutes,
                "clipped": end_time < current_time + timedelta(minutes=payload.duration_minutes),
            },
        )
        db.commit()

    db.refresh(booking)
    logger.info("booking_quick_created booking_id=%s room_id=%s end_time=%s", booking.id, room.id, booking.end_time)
    _push_to_google(db, [booking], calendar)
    return booking


@_tracked("recurring_create")
def create_recurring_booking(
    db: Session,
    payload: RecurringBookingCreateRequest,
    *,
    actor_user_id: int | None = None,
    now: datetime | None = None,
    calendar: CalendarClient | None = None,
) -> RecurringBookingResult:
    """Create a series root and its occurrences, skipping conflicting slots.

    Only slots that are free are persisted; the blocked ones are reported in
    ``skipped``. When the first slot is blocked the earliest free slot becomes
    the series root. ``ConflictError`` is raised only when no slot is free.
    """
    current_time = now or utcnow()
    room = _get_room(db, payload.room_id)
    _ensure_room_bookable(room)
    _validate_window(room, payload.start_time, payload.end_time, payload.source, current_time)
    host = _resolve_host(db, payload.host_user_id, payload.organizer_email)

    slots = expand_recurrence(
        payload.start_time,
        payload.end_time,
        payload.recurrence_rule,
        until=payload.recurrence_end_date,
        timezone_name=room.location.timezone,
        limit=settings.max_recurring_occurrences,
    )

    parent: Booking | None = None
    occurrences: list[Booking] = []
    skipped: list[SkippedOccurrence] = []
    with booking_write_guard(db):
        lock_room(db, room.id)
        for slot in slots:
            conflict = find_conflict(db, room.id, slot.start_time, slot.end_time)
            if conflict is not None:
                skipped.append(SkippedOccurrence(slot=slot, conflict=conflict))
                continue

            booking = Booking(
                room_id=room.id,
                host_user_id=host.id if host else None,
                organizer_email=payload.organizer_email or (host.email if host else None),
                attendee_emails=_unique_emails(payload.attendee_emails),
                title=payload.title,
                description=payload.description,
                start_time=slot.start_time,
                end_time=slot.end_time,
                status=BookingStatus.SCHEDULED.value,
                source=payload.source.value,
                is_recurring=True,
                recurring_parent_id=parent.id if parent else None,
                created_at=current_time,
                updated_at=current_time,
            )
            if parent is None:
                booking.recurrence_rule = payload.recurrence_rule.model_dump(mode="json", exclude_none=True)
                booking.recurrence_end_date = payload.recurrence_end_date
            db.add(booking)
            db.flush()
            if parent is None:
                parent = booking
            else:
                occurrences.append(booking)

        if parent is None:
            raise ConflictError(
                "No occurrence of the recurring booking could be created",
                skipped[0].conflict if skipped else None,
            )

        record_activity(
            db,
            parent,
            BookingAction.CREATED,
            now=current_time,
            actor_user_id=actor_user_id,
            details={
                "source": parent.source,
                "occurrences": len(occurrences),
                "skipped": len(skipped),
            },
        )
        db.commit()

    logger.info(
        "booking_series_created series_id=%s room_id=%s created=%s skipped=%s",
        parent.id,
        room.id,
        1 + len(occurrences),
        len(skipped),
    )
    result = RecurringBookingResult(
        parent=parent,
        occurrences=occurrences,
        skipped=skipped,
        expected_count=len(slots),
    )
    _push_to_google(db, result.bookings, calendar)
    return result


def _cancel(db: Session, booking: Booking, now: datetime, actor_user_id: int | None, action: BookingAction) -> None:
    apply_transition(booking, BookingStatus.CANCELLED)
    booking.updated_at = now
    _remember_deleted_event(db, booking, now)
    record_activity(db, booking, action, now=now, actor_user_id=actor_user_id)


@_tracked("cancel")
def cancel_booking(
    db: Session,
    booking_id: int,
    *,
    actor_user_id: int | None = None,
    now: datetime | None = None,
    calendar: CalendarClient | None = None,
) -> CancelResult:
    current_time = now or utcnow()
    booking = get_booking(db, booking_id)
    if booking.status == BookingStatus.CANCELLED.value:
        return CancelResult(booking=booking, already_cancelled=True)

    ensure_transition(booking, BookingStatus.CANCELLED)
    google_ref = _google_ref(booking)
    with booking_write_guard(db):
        _cancel(db, booking, current_time, actor_user_id, BookingAction.CANCELLED)
        db.commit()

    logger.info("booking_cancelled booking_id=%s room_id=%s", booking.id, booking.room_id)
    _delete_google_events([google_ref] if google_ref else [], calendar)
    return CancelResult(booking=booking, already_cancelled=False)


def _get_series_root(db: Session, series_id: int) -> Booking:
    root = db.get(Booking, series_id)
    if root is None or not root.is_series_root:
        raise NotFoundError("Recurring series not found", detail={"series_id": series_id})
    return root


@_tracked("cancel_series")
def cancel_recurring_series(
    db: Session,
    series_id: int,
    *,
    actor_user_id: int | None = None,
    now: datetime | None = None,
    calendar: CalendarClient | None = None,
) -> int:
    """Cancel every still-scheduled booking of a series; returns how many changed."""
    current_time = now or utcnow()
    root = _get_series_root(db, series_id)
    members = [root, *root.occurrences]

    google_refs: list[tuple[str, str]] = []
    cancelled = 0
    with booking_write_guard(db):
        for booking in members:
            if booking.status != BookingStatus.SCHEDULED.value:
                continue
            ref = _google_ref(booking)
            if ref:
                google_refs.append(ref)
            _cancel(db, booking, current_time, actor_user_id, BookingAction.CANCELLED)
            cancelled += 1
        db.commit()

    logger.info("booking_series_cancelled series_id=%s cancelled=%s", series_id, cancelled)
    _delete_google_events(google_refs, calendar)
    return cancelled


def cancel_series_occurrence(
    db: Session,
    series_id: int,
    occurrence_id: int,
    *,
    actor_user_id: int | None = None,
    now: datetime | None = None,
    calendar: CalendarClient | None = None,
) -> CancelResult:
    _get_series_root(db, series_id)
    occurrence = get_booking(db, occurrence_id)
    if occurrence.id != series_id and occurrence.recurring_parent_id != series_id:
        raise NotFoundError(
            "Occurrence does not belong to this series",
            detail={"series_id": series_id, "occurrence_id": occurrence_id},
        )
    return cancel_booking(db, occurrence.id, actor_user_id=actor_user_id, now=now, calendar=calendar)


@_tracked("check_in")
def check_in_booking(
    db: Session,
    booking_id: int,
    *,
    actor_user_id: int | None = None,
    now: datetime | None = None,
) -> Booking:
    current_time = now or utcnow()
    booking = get_booking(db, booking_id)
    ensure_transition(booking, BookingStatus.IN_PROGRESS)

    opens_at = booking.start_time - timedelta(minutes=settings.checkin_early_minutes)
    closes_at = min(booking.start_time + timedelta(minutes=settings.checkin_late_minutes), booking.end_time)
    if not opens_at <= current_time < closes_at:
        message = "Check-in is not open yet" if current_time < opens_at else "Check-in window has closed"
        raise InvalidStateError(
            message,
            detail={
                "booking_id": booking.id,
                "opens_at": opens_at.isoformat(),
                "closes_at": closes_at.isoformat(),
            },
        )

    with booking_write_guard(db):
        apply_transition(booking, BookingStatus.IN_PROGRESS)
        booking.check_in_time = current_time
        booking.updated_at = current_time
        record_activity(db, booking, BookingAction.CHECKED_IN, now=current_time, actor_user_id=actor_user_id)
        db.commit()

    logger.info("booking_checked_in booking_id=%s room_id=%s", booking.id, booking.room_id)
    return booking


@_tracked("end_early")
def end_booking_early(
    db: Session,
    booking_id: int,
    *,
    actor_user_id: int | None = None,
    now: datetime | None = None,
    calendar: CalendarClient | None = None,
) -> Booking:
    """Free the room now.

    A running booking ends at ``now``; a scheduled one is released
    (cancelled). Bookings already in a terminal state are returned as is.
    """
    current_time = now or utcnow()
    booking = get_booking(db, booking_id)
    status = status_of(booking)
    if is_terminal(status):
        return booking

    if status is BookingStatus.SCHEDULED:
        google_ref = _google_ref(booking)
        with booking_write_guard(db):
            _cancel(db, booking, current_time, actor_user_id, BookingAction.RELEASED)
            db.commit()
        logger.info("booking_released booking_id=%s room_id=%s", booking.id, booking.room_id)
        _delete_google_events([google_ref] if google_ref else [], calendar)
        return booking

    with booking_write_guard(db):
        apply_transition(booking, BookingStatus.ENDED)
        previous_end = booking.end_time
        _truncate_end(booking, current_time)
        booking.updated_at = current_time
        record_activity(
            db,
            booking,
            BookingAction.ENDED_EARLY,
            now=current_time,
            actor_user_id=actor_user_id,
            details={"scheduled_end": previous_end.isoformat()},
        )
        db.commit()

    logger.info("booking_ended_early booking_id=%s room_id=%s", booking.id, booking.room_id)
    _patch_google_times(booking, calendar)
    return booking


def _validate_extension_minutes(additional_minutes: int) -> None:
    if additional_minutes <= 0:
        raise BookingValidationError("additional_minutes must be positive")
    if additional_minutes > settings.max_extension_minutes:
        raise BookingValidationError(
            f"Extension exceeds maximum of {settings.max_extension_minutes} minutes",
            detail={"max_extension_minutes": settings.max_extension_minutes},
        )


def _ensure_extendable(booking: Booking) -> None:
    if booking.status not in (BookingStatus.SCHEDULED.value, BookingStatus.IN_PROGRESS.value):
        raise InvalidStateError(
            f"Cannot extend a booking that is {booking.status}",
            detail={"booking_id": booking.id, "status": booking.status},
        )


@_tracked("extend")
def extend_booking(
    db: Session,
    booking_id: int,
    additional_minutes: int,
    *,
    actor_user_id: int | None = None,
    now: datetime | None = None,
    calendar: CalendarClient | None = None,
) -> Booking:
    current_time = now or utcnow()
    _validate_extension_minutes(additional_minutes)
    booking = get_booking(db, booking_id)
    _ensure_extendable(booking)

    with booking_write_guard(db):
        lock_room(db, booking.room_id)
        previous_end = booking.end_time
        new_end = previous_end + timedelta(minutes=additional_minutes)
        conflict = find_conflict(db, booking.room_id, previous_end, new_end, exclude_ids=(booking.id,))
        if conflict is not None:
            raise ConflictError(EXTENSION_BLOCKED_DETAIL, conflict)

        booking.end_time = new_end
        booking.extended_count += 1
        booking.updated_at = current_time
        record_activity(
            db,
            booking,
            BookingAction.EXTENDED,
            now=current_time,
            actor_user_id=actor_user_id,
            details={
                "additional_minutes": additional_minutes,
                "previous_end": previous_end.isoformat(),
                "new_end": new_end.isoformat(),
            },
        )
        db.commit()

    logger.info("booking_extended booking_id=%s minutes=%s end_time=%s", booking.id, additional_minutes, new_end)
    _patch_google_times(booking, calendar)
    return booking


def check_extension_availability(db: Session, booking_id: int, additional_minutes: int) -> ExtensionAvailability:
    _validate_extension_minutes(additional_minutes)
    booking = get_booking(db, booking_id)
    _ensure_extendable(booking)
    new_end = booking.end_time + timedelta(minutes=additional_minutes)
    conflict = find_conflict(db, booking.room_id, booking.end_time, new_end, exclude_ids=(booking.id,))
    return ExtensionAvailability(can_extend=conflict is None, new_end_time=new_end, conflict=conflict)


def mark_no_shows(db: Session, now: datetime | None = None) -> NoShowScanResult:
    """Move scheduled bookings never checked in past the grace period to no_show.

    The booking's end is pulled back to ``now`` so the room becomes free.
    Rows already in no_show are outside the scan, so repeated runs are no-ops.
    """
    current_time = now or utcnow()
    grace_minutes = settings.no_show_grace_minutes
    cutoff = current_time - timedelta(minutes=grace_minutes)

    stale_bookings = db.scalars(
        select(Booking).where(
            Booking.status == BookingStatus.SCHEDULED.value,
            Booking.check_in_time.is_(None),
            Booking.start_time <= cutoff,
        )
    ).all()

    for booking in stale_bookings:
        apply_transition(booking, BookingStatus.NO_SHOW)
        _truncate_end(booking, current_time)
        booking.updated_at = current_time
        record_activity(db, booking, BookingAction.NO_SHOW, now=current_time, details={"grace_minutes": grace_minutes})

    if stale_bookings:
        db.commit()
        logger.info("bookings_marked_no_show count=%s grace_minutes=%s", len(stale_bookings), grace_minutes)
    BOOKING_OPERATIONS.labels(operation="no_show_scan", outcome="ok").inc()
    return NoShowScanResult(updated_count=len(stale_bookings), grace_minutes=grace_minutes)


def end_elapsed_bookings(db: Session, now: datetime | None = None) -> int:
    current_time = now or utcnow()
    cutoff = current_time - timedelta(minutes=settings.auto_end_after_minutes)

    elapsed = db.scalars(
        select(Booking).where(
            Booking.status == BookingStatus.IN_PROGRESS.value,
            Booking.end_time <= cutoff,
        )
    ).all()

    for booking in elapsed:
        apply_transition(booking, BookingStatus.ENDED)
        booking.updated_at = current_time
        record_activity(db, booking, BookingAction.AUTO_ENDED, now=current_time)

    if elapsed:
        db.commit()
        logger.info("bookings_auto_ended count=%s", len(elapsed))
    return len(elapsed)


def find_overdue_bookings(db: Session, now: datetime | None = None) -> list[OverdueBooking]:
    current_time = now or utcnow()
    bookings = db.scalars(
        select(Booking)
        .options(joinedload(Booking.host), joinedload(Booking.room).joinedload(Room.location))
        .where(
            Booking.status == BookingStatus.IN_PROGRESS.value,
            Booking.end_time <= current_time,
            Booking.overdue_reminder_sent_at.is_(None),
        )
        .order_by(Booking.end_time, Booking.id)
    ).unique().all()

    overdue: list[OverdueBooking] = []
    for booking in bookings:
        recipient_email = booking.host.email if booking.host else booking.organizer_email
        if not recipient_email:
            continue
        recipient_name = booking.host.display_name if booking.host else recipient_email.split("@")[0]
        overdue.append(
            OverdueBooking(
                booking=booking,
                recipient_email=recipient_email,
                recipient_name=recipient_name,
                room_name=booking.room.name,
                location_name=booking.room.location.name,
                timezone=booking.room.location.timezone,
            )
        )
    return overdue


def _visible_bookings_query():
    deleted_ids = select(DeletedGoogleEvent.google_event_id)
    return select(Booking).where(
        or_(Booking.google_event_id.is_(None), Booking.google_event_id.not_in(deleted_ids))
    )


def list_bookings(
    db: Session,
    *,
    room_id: int | None = None,
    host_user_id: int | None = None,
    status: BookingStatus | None = None,
    start_from: datetime | None = None,
    start_to: datetime | None = None,
    include_cancelled: bool = True,
    limit: int = 50,
    offset: int = 0,
) -> list[Booking]:
    """Bookings ordered by start time, never including locally deleted Google events."""
    query = _visible_bookings_query()
    if room_id is not None:
        query = query.where(Booking.room_id == room_id)
    if host_user_id is not None:
        query = query.where(Booking.host_user_id == host_user_id)
    if status is not None:
        query = query.where(Booking.status == status.value)
    elif not include_cancelled:
        query = query.where(Booking.status != BookingStatus.CANCELLED.value)
    if start_from is not None:
        query = query.where(Booking.end_time > start_from)
    if start_to is not None:
        query = query.where(Booking.start_time < start_to)

    return list(db.scalars(query.order_by(Booking.start_time, Booking.id).limit(limit).offset(offset)).all())


def list_room_bookings(
    db: Session,
    room_id: int,
    *,
    start_from: datetime | None = None,
    start_to: datetime | None = None,
    include_cancelled: bool = False,
    limit: int = 100,
    offset: int = 0,
    now: datetime | None = None,
    calendar: CalendarClient | None = None,
) -> list[Booking]:
    current_time = now or utcnow()
    _get_room(db, room_id)
    sync_room_before_read(db, room_id, now=current_time, calendar=calendar)
    return list_bookings(
        db,
        room_id=room_id,
        start_from=start_from,
        start_to=start_to,
        include_cancelled=include_cancelled,
        limit=limit,
        offset=offset,
    )


@_tracked("override_status")
def override_booking_status(
    db: Session,
    booking_id: int,
    status: BookingStatus,
    *,
    actor_user_id: int | None = None,
    now: datetime | None = None,
) -> Booking:
    """Administrative status change outside the lifecycle rules.

    Reviving a cancelled booking is still refused when the slot is taken.
    """
    current_time = now or utcnow()
    booking = get_booking(db, booking_id)
    previous = booking.status
    if previous == status.value:
        return booking

    with booking_write_guard(db):
        if previous == BookingStatus.CANCELLED.value:
            lock_room(db, booking.room_id)
            conflict = find_conflict(db, booking.room_id, booking.start_time, booking.end_time, exclude_ids=(booking.id,))
            if conflict is not None:
                raise ConflictError(ROOM_ALREADY_BOOKED_DETAIL, conflict)
            # The old event stays remembered as deleted; a revived booking must not be hidden by it.
            booking.google_event_id = None
            booking.google_calendar_id = None
            booking.last_synced_at = None

        apply_transition(booking, status, force=True)
        if status is BookingStatus.IN_PROGRESS and booking.check_in_time is None:
            booking.check_in_time = current_time
        if status is BookingStatus.CANCELLED:
            _remember_deleted_event(db, booking, current_time)
        booking.updated_at = current_time
        record_activity(
            db,
            booking,
            BookingAction.STATUS_OVERRIDDEN,
            now=current_time,
            actor_user_id=actor_user_id,
            details={"from": previous, "to": status.value},
        )
        db.commit()

    logger.info("booking_status_overridden booking_id=%s from=%s to=%s", booking.id, previous, status.value)
    return booking


@_tracked("delete")
def delete_booking(
    db: Session,
    booking_id: int,
    *,
    now: datetime | None = None,
    calendar: CalendarClient | None = None,
) -> int:
    """Hard delete a booking, and its occurrences when it is a series root.

    Returns the number of rows removed.
    """
    current_time = now or utcnow()
    booking = get_booking(db, booking_id)
    doomed = [booking, *booking.occurrences] if booking.is_series_root else [booking]

    google_refs = [ref for ref in (_google_ref(item) for item in doomed) if ref]
    with booking_write_guard(db):
        for item in doomed:
            _remember_deleted_event(db, item, current_time)
        for item in reversed(doomed):
            db.delete(item)
        db.commit()

    logger.info("booking_deleted booking_id=%s rows=%s", booking_id, len(doomed))
    _delete_google_events(google_refs, calendar)
    return len(doomed)


def list_recurring_series(
    db: Session,
    *,
    room_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
    now: datetime | None = None,
) -> list[SeriesSummary]:
    current_time = now or utcnow()
    query = select(Booking).where(Booking.is_recurring.is_(True), Booking.recurring_parent_id.is_(None))
    if room_id is not None:
        query = query.where(Booking.room_id == room_id)
    roots = db.scalars(query.order_by(Booking.start_time, Booking.id).limit(limit).offset(offset)).all()
    return [_summarize_series(root, current_time) for root in roots]


def get_recurring_series(db: Session, series_id: int, now: datetime | None = None) -> SeriesSummary:
    root = _get_series_root(db, series_id)
    return _summarize_series(root, now or utcnow())


def _summarize_series(root: Booking, now: datetime) -> SeriesSummary:
    members = [root, *root.occurrences]
    upcoming = [
        item.start_time
        for item in members
        if item.status == BookingStatus.SCHEDULED.value and item.start_time >= now
    ]
    return SeriesSummary(
        root=root,
        occurrence_count=len(members),
        next_occurrence=min(upcoming) if upcoming else None,
        occurrences=members,
    )
