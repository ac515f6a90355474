from datetime import UTC, datetime, timedelta

import pytest
from conftest import NOW, make_booking

from roombook.core.exceptions import ConflictError, InvalidStateError, TokenExpiredError
from roombook.db.models import Booking, BookingActivity, BookingStatus
from roombook.schemas.booking import ActionLinkType
from roombook.services.action_tokens import (
    consume_action_token,
    get_booking_by_action_token,
    perform_booking_action,
)

TOKEN = "f" * 64


def _overdue(db, room, **fields):
    return make_booking(
        db,
        room,
        NOW - timedelta(hours=1),
        NOW - timedelta(minutes=5),
        status=fields.pop("status", BookingStatus.IN_PROGRESS),
        check_in_time=NOW - timedelta(hours=1),
        action_token=TOKEN,
        action_token_issued_at=fields.pop("issued_at", NOW - timedelta(minutes=5)),
        overdue_reminder_sent_at=NOW - timedelta(minutes=5),
        **fields,
    )


def test_extend_link_extends_and_burns_token(db, room):
    booking = _overdue(db, room)

    result = perform_booking_action(db, TOKEN, ActionLinkType.EXTEND, now=NOW)

    assert result.action is ActionLinkType.EXTEND
    assert result.booking.end_time == NOW + timedelta(minutes=25)
    assert result.message == f"Booking extended until {result.booking.end_time.isoformat()}"
    db.expire_all()
    stored = db.get(Booking, booking.id)
    assert stored.action_token is None
    assert stored.action_token_issued_at is None

    with pytest.raises(TokenExpiredError):
        perform_booking_action(db, TOKEN, ActionLinkType.EXTEND, now=NOW)


def test_release_link_ends_meeting(db, room):
    booking = _overdue(db, room)

    result = perform_booking_action(db, TOKEN, ActionLinkType.RELEASE, now=NOW)

    assert result.message == "Room released"
    assert result.booking.status == BookingStatus.ENDED.value
    assert result.booking.end_time == NOW - timedelta(minutes=5)
    db.expire_all()
    assert db.get(Booking, booking.id).action_token is None


def test_link_actions_are_logged_for_the_host(db, room, user):
    booking = _overdue(db, room, host_user_id=user.id)

    perform_booking_action(db, TOKEN, ActionLinkType.EXTEND, now=NOW)

    activity = db.query(BookingActivity).filter(BookingActivity.booking_id == booking.id).one()
    assert activity.action == "extended"
    assert activity.actor_user_id == user.id


def test_blocked_extension_keeps_token_usable(db, room):
    booking = _overdue(db, room)
    make_booking(db, room, NOW, NOW + timedelta(hours=1), title="Next meeting")

    with pytest.raises(ConflictError):
        perform_booking_action(db, TOKEN, ActionLinkType.EXTEND, now=NOW)

    db.expire_all()
    assert db.get(Booking, booking.id).action_token == TOKEN

    released = perform_booking_action(db, TOKEN, ActionLinkType.RELEASE, now=NOW)
    assert released.booking.status == BookingStatus.ENDED.value


def test_expired_token_is_rejected(db, room):
    _overdue(db, room, issued_at=NOW - timedelta(hours=13))

    assert get_booking_by_action_token(db, TOKEN, now=NOW) is None
    with pytest.raises(TokenExpiredError):
        perform_booking_action(db, TOKEN, ActionLinkType.RELEASE, now=NOW)


def test_unknown_token_is_rejected(db, room):
    assert get_booking_by_action_token(db, None, now=NOW) is None
    with pytest.raises(TokenExpiredError):
        perform_booking_action(db, "0" * 64, ActionLinkType.EXTEND, now=NOW)


def test_token_of_finished_booking_reports_state(db, room):
    _overdue(db, room, status=BookingStatus.ENDED)

    with pytest.raises(InvalidStateError) as exc_info:
        perform_booking_action(db, TOKEN, ActionLinkType.EXTEND, now=NOW)

    assert exc_info.value.detail["status"] == "ended"


def test_token_can_only_be_consumed_once(db, room):
    booking = _overdue(db, room)

    assert consume_action_token(db, TOKEN, now=NOW).id == booking.id
    assert consume_action_token(db, TOKEN, now=NOW) is None


def test_action_link_endpoint(client, db, room):
    now = datetime.now(UTC)
    make_booking(
        db,
        room,
        now - timedelta(hours=1),
        now - timedelta(minutes=5),
        status=BookingStatus.IN_PROGRESS,
        action_token=TOKEN,
        action_token_issued_at=now - timedelta(minutes=5),
    )

    response = client.get("/bookings/action", params={"token": TOKEN, "action": "release"})
    assert response.status_code == 200
    body = response.json()
    assert body["action"] == "release"
    assert body["booking"]["status"] == "ended"

    reused = client.get("/bookings/action", params={"token": TOKEN, "action": "release"})
    assert reused.status_code == 410
    assert reused.json()["error"]["code"] == "token_expired"


def test_action_link_rejects_unknown_action(client):
    response = client.get("/bookings/action", params={"token": TOKEN, "action": "delete"})

    assert response.status_code == 422
