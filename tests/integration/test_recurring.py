from datetime import UTC, date, datetime, timedelta

import pytest
from conftest import NOW, make_booking

from roombook.core.exceptions import ConflictError, NotFoundError
from roombook.db.models import Booking, BookingStatus
from roombook.schemas.booking import RecurringBookingCreateRequest
from roombook.schemas.recurrence import RecurrenceRule, RecurrenceType
from roombook.services import booking_service


def _weekly(room, start, count=3, **kwargs) -> RecurringBookingCreateRequest:
    return RecurringBookingCreateRequest(
        room_id=room.id,
        title="Weekly sync",
        start_time=start,
        end_time=start + timedelta(hours=1),
        recurrence_rule=RecurrenceRule(type=RecurrenceType.WEEKLY, count=count),
        **kwargs,
    )


def test_series_creates_root_and_occurrences(db, room):
    result = booking_service.create_recurring_booking(db, _weekly(room, NOW + timedelta(hours=1)), now=NOW)

    assert result.created_count == 4
    assert result.expected_count == 4
    assert result.skipped == []
    root = result.parent
    assert root.is_series_root
    assert root.recurrence_rule == {"type": "weekly", "interval": 1, "count": 3}
    assert all(item.recurring_parent_id == root.id for item in result.occurrences)
    assert [item.start_time for item in result.bookings] == [
        NOW + timedelta(hours=1) + timedelta(weeks=week) for week in range(4)
    ]


def test_conflicting_occurrences_are_skipped_and_reported(db, room, user):
    blocker = make_booking(
        db,
        room,
        NOW + timedelta(weeks=2, hours=1),
        NOW + timedelta(weeks=2, hours=2),
        title="Offsite",
        host_user_id=user.id,
    )

    result = booking_service.create_recurring_booking(db, _weekly(room, NOW + timedelta(hours=1)), now=NOW)

    assert result.created_count == 3
    assert len(result.skipped) == 1
    skipped = result.skipped[0]
    assert skipped.slot.start_time == NOW + timedelta(weeks=2, hours=1)
    assert skipped.conflict.booking_id == blocker.id
    assert skipped.conflict.organizer == "Ada Lovelace"


def test_first_free_slot_becomes_root_when_first_is_taken(db, room):
    make_booking(db, room, NOW + timedelta(hours=1), NOW + timedelta(hours=2))

    result = booking_service.create_recurring_booking(db, _weekly(room, NOW + timedelta(hours=1)), now=NOW)

    root = result.parent
    assert root.start_time == NOW + timedelta(weeks=1, hours=1)
    assert root.recurrence_rule is not None
    assert result.created_count == 3
    assert all(item.recurring_parent_id == root.id for item in result.occurrences)


def test_fully_blocked_series_is_conflict(db, room):
    make_booking(db, room, NOW + timedelta(hours=1), NOW + timedelta(hours=2))

    with pytest.raises(ConflictError):
        booking_service.create_recurring_booking(
            db,
            _weekly(room, NOW + timedelta(hours=1), count=None, recurrence_end_date=date(2026, 3, 2)),
            now=NOW,
        )

    assert db.query(Booking).count() == 1


def test_cancel_series_only_touches_scheduled_bookings(db, room):
    result = booking_service.create_recurring_booking(db, _weekly(room, NOW + timedelta(hours=1)), now=NOW)
    running = result.occurrences[0]
    running.status = BookingStatus.IN_PROGRESS.value
    db.commit()

    cancelled = booking_service.cancel_recurring_series(db, result.parent.id, now=NOW)

    assert cancelled == 3
    db.expire_all()
    statuses = sorted(booking.status for booking in db.query(Booking).all())
    assert statuses == ["cancelled", "cancelled", "cancelled", "in_progress"]


def test_cancel_single_occurrence(db, room):
    result = booking_service.create_recurring_booking(db, _weekly(room, NOW + timedelta(hours=1)), now=NOW)
    target = result.occurrences[1]

    outcome = booking_service.cancel_series_occurrence(db, result.parent.id, target.id, now=NOW)

    assert outcome.booking.status == BookingStatus.CANCELLED.value
    with pytest.raises(NotFoundError):
        booking_service.cancel_series_occurrence(db, result.parent.id, 9999, now=NOW)
    with pytest.raises(NotFoundError):
        booking_service.cancel_recurring_series(db, target.id, now=NOW)


def test_series_summary_and_delete(db, room):
    result = booking_service.create_recurring_booking(db, _weekly(room, NOW + timedelta(hours=1)), now=NOW)

    summary = booking_service.get_recurring_series(db, result.parent.id, now=NOW + timedelta(days=2))
    assert summary.occurrence_count == 4
    assert summary.next_occurrence == NOW + timedelta(weeks=1, hours=1)
    assert len(booking_service.list_recurring_series(db, room_id=room.id, now=NOW)) == 1

    assert booking_service.delete_booking(db, result.parent.id, now=NOW) == 4
    assert db.query(Booking).count() == 0


def test_recurring_and_admin_endpoints(client, room):
    start = datetime.now(UTC).replace(second=0, microsecond=0) + timedelta(days=1)
    payload = {
        "room_id": room.id,
        "title": "Retro",
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(hours=1)).isoformat(),
        "recurrence_rule": {"type": "weekly", "count": 2},
    }

    created = client.post("/bookings/recurring", json=payload)
    assert created.status_code == 201
    body = created.json()
    assert body["created_count"] == 3
    assert body["expected_count"] == 3
    series_id = body["series_id"]

    listing = client.get("/admin/recurring", params={"room_id": room.id})
    assert [item["series_id"] for item in listing.json()] == [series_id]

    detail = client.get(f"/admin/recurring/{series_id}")
    assert detail.status_code == 200
    assert len(detail.json()["occurrences"]) == 3

    occurrence_id = body["bookings"][2]["id"]
    single = client.delete(f"/admin/recurring/{series_id}/occurrences/{occurrence_id}")
    assert single.json()["booking"]["status"] == "cancelled"

    cancelled = client.delete(f"/admin/recurring/{series_id}")
    assert cancelled.json() == {"series_id": series_id, "cancelled_count": 2}

    missing = client.get("/admin/recurring/99999")
    assert missing.status_code == 404


def test_recurring_request_needs_an_end(client, room):
    start = datetime.now(UTC) + timedelta(days=1)
    payload = {
        "room_id": room.id,
        "title": "Retro",
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(hours=1)).isoformat(),
        "recurrence_rule": {"type": "weekly"},
    }

    response = client.post("/bookings/recurring", json=payload)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "validation"


def test_admin_status_override_and_delete(client, db, room):
    booking = make_booking(db, room, NOW + timedelta(days=400), NOW + timedelta(days=400, hours=1))

    overridden = client.patch(f"/admin/bookings/{booking.id}/status", json={"status": "no_show"})
    assert overridden.status_code == 200
    assert overridden.json()["status"] == "no_show"

    deleted = client.delete(f"/admin/bookings/{booking.id}")
    assert deleted.json() == {"deleted_count": 1}
    assert client.get(f"/bookings/{booking.id}").status_code == 404


def test_admin_sync_endpoint(client, room, fake_calendar):
    start = datetime.now(UTC).replace(microsecond=0) + timedelta(hours=3)
    fake_calendar.events["aurora@resource.example.com"].append(
        {
            "id": "evt-admin",
            "status": "confirmed",
            "summary": "From Google",
            "start": {"dateTime": start.isoformat()},
            "end": {"dateTime": (start + timedelta(hours=1)).isoformat()},
        }
    )

    single = client.post("/admin/bookings/sync-from-google", json={"room_id": room.id})
    assert single.status_code == 200
    assert single.json()["created"] == 1

    everything = client.post("/admin/bookings/sync-from-google")
    assert everything.status_code == 200
    assert everything.json()["processed"] == 1
    assert everything.json()["failed_room_ids"] == []


def test_admin_no_show_scan(client):
    response = client.post("/admin/bookings/no-show-scan")

    assert response.status_code == 200
    assert response.json() == {"updated_count": 0, "grace_minutes": 15}
