from datetime import datetime
from enum import Enum
from typing import Protocol, TypeVar

from roombook.core.clock import utcnow
from roombook.db.models import BookingStatus


class DisplayStatus(str, Enum):
    IN_USE = "in_use"
    UPCOMING = "upcoming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class BookingBucket(str, Enum):
    IN_USE = "in_use"
    UPCOMING = "upcoming"
    COMPLETED_CANCELLED = "completed_cancelled"


class BookingLike(Protocol):
    status: str
    start_time: datetime
    end_time: datetime


T = TypeVar("T", bound=BookingLike)


def normalize_booking_status(booking: BookingLike, now: datetime | None = None) -> DisplayStatus:
    """Collapse lifecycle status and time window into the status screens show.

    no_show and cancelled pass through; ended or elapsed bookings are
    completed; checked-in or currently running bookings are in use; the rest
    are upcoming.
    """
    current_time = now or utcnow()
    status = booking.status

    if status == BookingStatus.NO_SHOW.value:
        return DisplayStatus.NO_SHOW
    if status == BookingStatus.CANCELLED.value:
        return DisplayStatus.CANCELLED
    if status == BookingStatus.ENDED.value or booking.end_time <= current_time:
        return DisplayStatus.COMPLETED
    if status == BookingStatus.IN_PROGRESS.value or booking.start_time <= current_time:
        return DisplayStatus.IN_USE
    return DisplayStatus.UPCOMING


def bucket_bookings(bookings: list[T], now: datetime | None = None) -> dict[BookingBucket, list[T]]:
    current_time = now or utcnow()
    buckets: dict[BookingBucket, list[T]] = {bucket: [] for bucket in BookingBucket}
    for booking in bookings:
        display = normalize_booking_status(booking, now=current_time)
        if display is DisplayStatus.IN_USE:
            buckets[BookingBucket.IN_USE].append(booking)
        elif display is DisplayStatus.UPCOMING:
            buckets[BookingBucket.UPCOMING].append(booking)
        else:
            buckets[BookingBucket.COMPLETED_CANCELLED].append(booking)
    return buckets
