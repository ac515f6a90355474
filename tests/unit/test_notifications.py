from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

from conftest import NOW, make_booking

from roombook.db.models import Booking, BookingStatus
from roombook.schemas.booking import ActionLinkType
from roombook.services.notifications import build_action_links, send_overdue_reminders


class RecordingSender:
    def __init__(self) -> None:
        self.sent = []

    def send(self, reminder) -> None:
        self.sent.append(reminder)


class BrokenSender:
    def send(self, reminder) -> None:
        raise ConnectionError("smtp down")


def _overdue_booking(db, room, user):
    return make_booking(
        db,
        room,
        NOW - timedelta(hours=1),
        NOW - timedelta(minutes=5),
        status=BookingStatus.IN_PROGRESS,
        host_user_id=user.id,
        check_in_time=NOW - timedelta(hours=1),
    )


def test_build_action_links_carry_token_and_action():
    links = build_action_links("abc123", base_url="https://rooms.example.com/")

    assert set(links) == {ActionLinkType.EXTEND, ActionLinkType.RELEASE}
    extend = urlsplit(links[ActionLinkType.EXTEND])
    assert extend.netloc == "rooms.example.com"
    assert extend.path == "/bookings/action"
    assert parse_qs(extend.query) == {"token": ["abc123"], "action": ["extend"]}
    assert parse_qs(urlsplit(links[ActionLinkType.RELEASE]).query)["action"] == ["release"]


def test_send_overdue_reminders_sends_once_with_single_token(db, room, user):
    booking = _overdue_booking(db, room, user)
    sender = RecordingSender()

    result = send_overdue_reminders(db, sender, now=NOW)

    assert (result.processed, result.sent, result.failed) == (1, 1, 0)
    reminder = sender.sent[0]
    assert reminder.booking_id == booking.id
    assert reminder.recipient_email == "ada@example.com"
    assert reminder.room_name == "Aurora"
    assert reminder.scheduled_end.utcoffset() == timedelta(hours=1)
    token = parse_qs(urlsplit(reminder.extend_url).query)["token"][0]
    assert parse_qs(urlsplit(reminder.release_url).query)["token"][0] == token

    db.expire_all()
    stored = db.get(Booking, booking.id)
    assert stored.action_token == token
    assert stored.action_token_issued_at == NOW
    assert stored.overdue_reminder_sent_at == NOW

    again = send_overdue_reminders(db, sender, now=NOW + timedelta(minutes=5))
    assert again.processed == 0
    assert len(sender.sent) == 1


def test_failed_send_is_retried_on_next_run(db, room, user):
    booking = _overdue_booking(db, room, user)

    result = send_overdue_reminders(db, BrokenSender(), now=NOW)

    assert (result.processed, result.sent, result.failed) == (1, 0, 1)
    db.expire_all()
    stored = db.get(Booking, booking.id)
    assert stored.overdue_reminder_sent_at is None
    assert stored.action_token is None

    retry = send_overdue_reminders(db, RecordingSender(), now=NOW + timedelta(minutes=5))
    assert retry.sent == 1
