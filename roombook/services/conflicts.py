from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, joinedload

from roombook.core.exceptions import BookingError, ConflictError
from roombook.db.models import Booking, BookingStatus, Room

LOCK_CONFLICT_DETAIL = "Room booking is in progress. Retry the request."
ROOM_ALREADY_BOOKED_DETAIL = "Room is already booked for the requested time"
PG_LOCK_NOT_AVAILABLE_SQLSTATE = "55P03"


@dataclass(frozen=True)
class BookingConflict:
    booking_id: int
    title: str
    organizer: str | None
    start_time: datetime
    end_time: datetime

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingConflict":
        organizer = booking.host.display_name if booking.host else booking.organizer_email
        return cls(
            booking_id=booking.id,
            title=booking.title,
            organizer=organizer,
            start_time=booking.start_time,
            end_time=booking.end_time,
        )

    def as_detail(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "title": self.title,
            "organizer": self.organizer,
            "start": self.start_time.isoformat(),
            "end": self.end_time.isoformat(),
        }


def _is_postgresql_session(db: Session) -> bool:
    bind = db.get_bind()
    return bind is not None and bind.dialect.name == "postgresql"


def _is_pg_lock_not_available(exc: OperationalError) -> bool:
    original_error = getattr(exc, "orig", None)
    if original_error is None:
        return False

    sqlstate = getattr(original_error, "sqlstate", None)
    if sqlstate is None:
        sqlstate = getattr(original_error, "pgcode", None)

    return sqlstate == PG_LOCK_NOT_AVAILABLE_SQLSTATE


def lock_room(db: Session, room_id: int) -> None:
    """Serialise booking writers for one room until the transaction ends.

    PostgreSQL takes a row lock without waiting; other engines get a write
    on the room row, which SQLite turns into a database-wide write lock.
    """
    if _is_postgresql_session(db):
        db.execute(select(Room.id).where(Room.id == room_id).with_for_update(nowait=True))
        return
    db.execute(
        update(Room)
        .where(Room.id == room_id)
        .values(lock_version=Room.lock_version + 1)
        .execution_options(synchronize_session=False)
    )


@contextmanager
def booking_write_guard(db: Session) -> Iterator[None]:
    """Roll back and translate storage-level contention into ``ConflictError``."""
    try:
        yield
    except BookingError:
        db.rollback()
        raise
    except OperationalError as exc:
        db.rollback()
        if _is_pg_lock_not_available(exc):
            raise ConflictError(LOCK_CONFLICT_DETAIL) from None
        raise
    except IntegrityError:
        db.rollback()
        raise ConflictError(ROOM_ALREADY_BOOKED_DETAIL) from None


def find_conflicting_bookings(
    db: Session,
    room_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_ids: tuple[int, ...] = (),
) -> list[Booking]:
    """Non-cancelled bookings in the room overlapping [start_time, end_time).

    Intervals are half-open: a booking ending exactly at ``start_time`` does
    not conflict.
    """
    query = (
        select(Booking)
        .options(joinedload(Booking.host))
        .where(
            Booking.room_id == room_id,
            Booking.status != BookingStatus.CANCELLED.value,
            Booking.start_time < end_time,
            Booking.end_time > start_time,
        )
        .order_by(Booking.start_time, Booking.id)
    )
    if exclude_ids:
        query = query.where(Booking.id.not_in(exclude_ids))
    return list(db.scalars(query).unique().all())


def find_conflict(
    db: Session,
    room_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_ids: tuple[int, ...] = (),
) -> BookingConflict | None:
    conflicts = find_conflicting_bookings(db, room_id, start_time, end_time, exclude_ids)
    if not conflicts:
        return None
    return BookingConflict.from_booking(conflicts[0])
