from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from roombook.services.booking_status import BookingBucket, DisplayStatus, bucket_bookings, normalize_booking_status

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _booking(status: str, start_offset: int, end_offset: int) -> SimpleNamespace:
    return SimpleNamespace(
        status=status,
        start_time=NOW + timedelta(minutes=start_offset),
        end_time=NOW + timedelta(minutes=end_offset),
    )


@pytest.mark.parametrize(
    ("status", "start_offset", "end_offset", "expected"),
    [
        ("no_show", -30, 30, DisplayStatus.NO_SHOW),
        ("cancelled", 30, 60, DisplayStatus.CANCELLED),
        ("ended", -60, 30, DisplayStatus.COMPLETED),
        ("scheduled", -60, -30, DisplayStatus.COMPLETED),
        ("in_progress", -60, -1, DisplayStatus.COMPLETED),
        ("in_progress", -10, 50, DisplayStatus.IN_USE),
        ("scheduled", -5, 55, DisplayStatus.IN_USE),
        ("scheduled", 30, 90, DisplayStatus.UPCOMING),
    ],
)
def test_normalize_booking_status(status, start_offset, end_offset, expected):
    assert normalize_booking_status(_booking(status, start_offset, end_offset), now=NOW) is expected


def test_bucket_bookings_groups_by_display_status():
    running = _booking("in_progress", -10, 50)
    upcoming = _booking("scheduled", 60, 120)
    cancelled = _booking("cancelled", 60, 120)
    finished = _booking("ended", -120, -60)

    buckets = bucket_bookings([running, upcoming, cancelled, finished], now=NOW)

    assert buckets[BookingBucket.IN_USE] == [running]
    assert buckets[BookingBucket.UPCOMING] == [upcoming]
    assert buckets[BookingBucket.COMPLETED_CANCELLED] == [cancelled, finished]


def test_bucket_bookings_always_has_every_bucket():
    buckets = bucket_bookings([], now=NOW)
    assert set(buckets) == set(BookingBucket)
