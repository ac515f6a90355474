import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from roombook.core.clock import utcnow
from roombook.core.config import settings
from roombook.core.exceptions import ConflictError, ExternalSyncError, NotFoundError
from roombook.core.metrics import GOOGLE_SYNC_RUNS
from roombook.core.throttle import sync_throttle
from roombook.db.models import (
    Booking,
    BookingAction,
    BookingSource,
    BookingStatus,
    DeletedGoogleEvent,
    Room,
    RoomStatus,
)
from roombook.schemas.calendar import CalendarEvent
from roombook.services.activity import record_activity
from roombook.services.booking_state import apply_transition
from roombook.services.conflicts import booking_write_guard, find_conflict, lock_room
from roombook.services.google_calendar import CalendarClient, get_calendar_client, resolve_room_calendar_id
from roombook.services.users import get_active_user_by_email

logger = logging.getLogger(__name__)

UNTITLED_EVENT = "(No title)"


@dataclass(frozen=True)
class GraceWindow:
    """Interval after a local write during which sync leaves the row alone."""

    duration: timedelta

    def covers(self, moment: datetime | None, now: datetime) -> bool:
        if moment is None:
            return False
        return now - moment < self.duration


@dataclass
class SyncResult:
    room_id: int
    created: int = 0
    updated: int = 0
    cancelled: int = 0
    linked: int = 0
    suppressed: int = 0
    skipped_events: int = 0
    skip_reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None

    @property
    def synced(self) -> int:
        return self.created + self.updated + self.cancelled


def reset_sync_state() -> None:
    sync_throttle.reset()


def _claim_sync_slot(room_id: int, now: datetime) -> bool:
    return sync_throttle.claim(f"room:{room_id}", timedelta(seconds=settings.google_sync_ttl_seconds), now)


def grace_window() -> GraceWindow:
    return GraceWindow(timedelta(minutes=settings.google_sync_grace_minutes))


def _has_recent_tablet_booking(db: Session, room_id: int, window: GraceWindow, now: datetime) -> bool:
    return (
        db.scalar(
            select(Booking.id)
            .where(
                Booking.room_id == room_id,
                Booking.source == BookingSource.TABLET.value,
                Booking.created_at > now - window.duration,
            )
            .limit(1)
        )
        is not None
    )


def _local_change_at(booking: Booking) -> datetime | None:
    # Sync writes stamp updated_at and last_synced_at together; anything newer is local.
    if booking.last_synced_at is not None and booking.updated_at <= booking.last_synced_at:
        return None
    return booking.updated_at


def _deleted_event_ids(db: Session, event_ids: list[str]) -> set[str]:
    if not event_ids:
        return set()
    return set(
        db.scalars(
            select(DeletedGoogleEvent.google_event_id).where(DeletedGoogleEvent.google_event_id.in_(event_ids))
        ).all()
    )


def _cancel_from_google(db: Session, booking: Booking, now: datetime, reason: str) -> None:
    apply_transition(booking, BookingStatus.CANCELLED)
    booking.updated_at = now
    booking.last_synced_at = now
    db.flush()
    record_activity(db, booking, BookingAction.CANCELLED, now=now, details={"source": "google", "reason": reason})


def _create_from_event(
    db: Session,
    room: Room,
    calendar_id: str,
    event: CalendarEvent,
    start_time: datetime,
    end_time: datetime,
    now: datetime,
) -> Booking:
    host = get_active_user_by_email(db, event.organizer_email)
    booking = Booking(
        room_id=room.id,
        host_user_id=host.id if host else None,
        organizer_email=event.organizer_email,
        attendee_emails=event.attendee_emails,
        attendee_response_statuses=event.attendee_response_statuses,
        title=(event.summary or UNTITLED_EVENT)[:200],
        description=event.description,
        start_time=start_time,
        end_time=end_time,
        status=BookingStatus.SCHEDULED.value,
        source=BookingSource.GOOGLE.value,
        google_event_id=event.id,
        google_calendar_id=calendar_id,
        last_synced_at=now,
        created_at=now,
        updated_at=now,
    )
    db.add(booking)
    db.flush()
    record_activity(db, booking, BookingAction.SYNCED, now=now, details={"google_event_id": event.id, "change": "created"})
    return booking


def _refresh_from_event(
    db: Session,
    booking: Booking,
    event: CalendarEvent,
    start_time: datetime,
    end_time: datetime,
    now: datetime,
) -> bool:
    changes: dict[str, object] = {}
    if booking.start_time != start_time or booking.end_time != end_time:
        blocking = find_conflict(db, booking.room_id, start_time, end_time, exclude_ids=(booking.id,))
        if blocking is not None:
            logger.info(
                "google_sync_move_blocked booking_id=%s conflicting_booking_id=%s",
                booking.id,
                blocking.booking_id,
            )
        else:
            changes["start_time"] = start_time
            changes["end_time"] = end_time

    title = (event.summary or UNTITLED_EVENT)[:200]
    if booking.title != title:
        changes["title"] = title
    if booking.description != event.description:
        changes["description"] = event.description
    if event.organizer_email and booking.organizer_email != event.organizer_email:
        changes["organizer_email"] = event.organizer_email
        host = get_active_user_by_email(db, event.organizer_email)
        changes["host_user_id"] = host.id if host else None
    if booking.attendee_emails != event.attendee_emails:
        changes["attendee_emails"] = event.attendee_emails
    if booking.attendee_response_statuses != event.attendee_response_statuses:
        changes["attendee_response_statuses"] = event.attendee_response_statuses

    booking.last_synced_at = now
    if not changes:
        return False

    for name, value in changes.items():
        setattr(booking, name, value)
    booking.updated_at = now
    db.flush()
    record_activity(
        db,
        booking,
        BookingAction.SYNCED,
        now=now,
        details={"google_event_id": event.id, "change": "updated", "fields": sorted(changes)},
    )
    return True


def _reconcile(
    db: Session,
    room: Room,
    calendar_id: str,
    events: list[CalendarEvent],
    window_start: datetime,
    window_end: datetime,
    now: datetime,
    result: SyncResult,
) -> None:
    grace = grace_window()
    event_ids = [event.id for event in events if event.id]
    deleted_ids = _deleted_event_ids(db, event_ids)

    known = db.scalars(
        select(Booking).where(
            Booking.room_id == room.id,
            Booking.google_event_id.is_not(None),
            or_(
                Booking.google_event_id.in_(event_ids),
                (Booking.start_time < window_end) & (Booking.end_time > window_start),
            ),
        )
    ).all()
    by_event_id = {booking.google_event_id: booking for booking in known}
    seen: set[str] = set()

    for event in events:
        if not event.id:
            continue
        seen.add(event.id)
        if event.id in deleted_ids:
            result.suppressed += 1
            continue

        booking = by_event_id.get(event.id)
        if booking is None and event.private_booking_id is not None:
            local = db.get(Booking, event.private_booking_id)
            if local is not None and local.room_id == room.id and local.google_event_id is None:
                local.google_event_id = event.id
                local.google_calendar_id = calendar_id
                local.last_synced_at = now
                by_event_id[event.id] = local
                result.linked += 1
                continue

        if booking is not None and booking.source != BookingSource.GOOGLE.value:
            booking.last_synced_at = now
            continue

        if event.is_cancelled:
            if (
                booking is not None
                and booking.status == BookingStatus.SCHEDULED.value
                and not grace.covers(_local_change_at(booking), now)
            ):
                _cancel_from_google(db, booking, now, reason="event_cancelled")
                result.cancelled += 1
            continue

        start_time, end_time = event.start_at, event.end_at
        if start_time is None or end_time is None or end_time <= start_time:
            result.skipped_events += 1
            continue

        if booking is None:
            blocking = find_conflict(db, room.id, start_time, end_time)
            if blocking is not None:
                logger.info(
                    "google_sync_event_overlaps room_id=%s google_event_id=%s conflicting_booking_id=%s",
                    room.id,
                    event.id,
                    blocking.booking_id,
                )
                result.skipped_events += 1
                continue
            _create_from_event(db, room, calendar_id, event, start_time, end_time, now)
            result.created += 1
            continue

        if booking.status != BookingStatus.SCHEDULED.value or grace.covers(_local_change_at(booking), now):
            continue
        if _refresh_from_event(db, booking, event, start_time, end_time, now):
            result.updated += 1

    for event_id, booking in by_event_id.items():
        if event_id in seen:
            continue
        if booking.source != BookingSource.GOOGLE.value or booking.status != BookingStatus.SCHEDULED.value:
            continue
        if grace.covers(booking.created_at, now) or grace.covers(_local_change_at(booking), now):
            continue
        _cancel_from_google(db, booking, now, reason="event_missing")
        result.cancelled += 1


def sync_room_from_google(
    db: Session,
    room_id: int,
    *,
    force: bool = False,
    now: datetime | None = None,
    calendar: CalendarClient | None = None,
) -> SyncResult:
    """Pull the room's Google Calendar events into local bookings.

    Raises ``ExternalSyncError`` when Google cannot be reached; throttled and
    guarded runs return a result with ``skip_reason`` set instead.
    """
    current_time = now or utcnow()
    room = db.get(Room, room_id)
    if room is None:
        raise NotFoundError("Room not found", detail={"room_id": room_id})

    result = SyncResult(room_id=room_id)
    client = calendar if calendar is not None else get_calendar_client()
    calendar_id = resolve_room_calendar_id(room)
    if client is None or calendar_id is None:
        result.skip_reason = "not_configured"
    elif room.status == RoomStatus.DISABLED.value:
        result.skip_reason = "room_disabled"
    elif not force and _has_recent_tablet_booking(db, room.id, grace_window(), current_time):
        result.skip_reason = "recent_local_booking"
    elif not force and not _claim_sync_slot(room.id, current_time):
        result.skip_reason = "throttled"
    if result.skipped:
        GOOGLE_SYNC_RUNS.labels(outcome="skipped").inc()
        return result

    window_start = current_time - timedelta(minutes=settings.google_sync_window_past_minutes)
    window_end = current_time + timedelta(days=settings.google_sync_window_future_days)
    try:
        events = client.list_events(calendar_id, window_start, window_end)
    except ExternalSyncError:
        GOOGLE_SYNC_RUNS.labels(outcome="failed").inc()
        raise

    try:
        with booking_write_guard(db):
            lock_room(db, room.id)
            _reconcile(db, room, calendar_id, events, window_start, window_end, current_time, result)
            db.commit()
    except ConflictError as exc:
        logger.warning("google_sync_room_busy room_id=%s reason=%s", room.id, exc.message)
        GOOGLE_SYNC_RUNS.labels(outcome="skipped").inc()
        return SyncResult(room_id=room.id, skip_reason="room_busy")

    GOOGLE_SYNC_RUNS.labels(outcome="synced").inc()
    logger.info(
        "google_sync_completed room_id=%s created=%s updated=%s cancelled=%s linked=%s suppressed=%s",
        room.id,
        result.created,
        result.updated,
        result.cancelled,
        result.linked,
        result.suppressed,
    )
    return result


def sync_room_before_read(
    db: Session,
    room_id: int,
    *,
    now: datetime | None = None,
    calendar: CalendarClient | None = None,
) -> SyncResult | None:
    """Opportunistic sync for read paths; a Google failure never fails the read."""
    try:
        return sync_room_from_google(db, room_id, now=now, calendar=calendar)
    except ExternalSyncError as exc:
        db.rollback()
        logger.warning("google_sync_failed room_id=%s error=%s", room_id, exc.message)
        return None


@dataclass
class SyncAllResult:
    results: list[SyncResult] = field(default_factory=list)
    failed_room_ids: list[int] = field(default_factory=list)

    @property
    def rooms(self) -> int:
        return len(self.results) + len(self.failed_room_ids)

    @property
    def synced(self) -> int:
        return sum(result.synced for result in self.results)


def sync_all_rooms(
    db: Session,
    *,
    force: bool = True,
    now: datetime | None = None,
    calendar: CalendarClient | None = None,
) -> SyncAllResult:
    current_time = now or utcnow()
    room_ids = db.scalars(
        select(Room.id)
        .where(
            Room.status != RoomStatus.DISABLED.value,
            (Room.google_calendar_id.is_not(None)) | (Room.google_resource_id.is_not(None)),
        )
        .order_by(Room.id)
    ).all()

    summary = SyncAllResult()
    for room_id in room_ids:
        try:
            result = sync_room_from_google(db, room_id, force=force, now=current_time, calendar=calendar)
        except ExternalSyncError:
            db.rollback()
            logger.exception("google_sync_room_failed room_id=%s", room_id)
            summary.failed_room_ids.append(room_id)
            continue
        summary.results.append(result)
    return summary
