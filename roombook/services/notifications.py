import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from urllib.parse import urlencode
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from roombook.core.clock import utcnow
from roombook.core.config import settings
from roombook.core.security import generate_action_token
from roombook.schemas.booking import ActionLinkType
from roombook.services.action_tokens import mark_overdue_reminder_sent
from roombook.services.booking_service import OverdueBooking, find_overdue_bookings

logger = logging.getLogger(__name__)

ACTION_PATH = "/bookings/action"


@dataclass(frozen=True)
class OverdueReminder:
    booking_id: int
    recipient_email: str
    recipient_name: str
    title: str
    room_name: str
    location_name: str
    scheduled_end: datetime
    extend_url: str
    release_url: str
    extend_minutes: int


class ReminderSender(Protocol):
    def send(self, reminder: OverdueReminder) -> None: ...


class LoggingReminderSender:
    """Default sender; writes the reminder to the log instead of delivering email."""

    def send(self, reminder: OverdueReminder) -> None:
        logger.info(
            "overdue_reminder booking_id=%s to=%s room=%s extend_url=%s release_url=%s",
            reminder.booking_id,
            reminder.recipient_email,
            reminder.room_name,
            reminder.extend_url,
            reminder.release_url,
        )


@dataclass(frozen=True)
class ReminderRunResult:
    processed: int
    sent: int
    failed: int


def build_action_links(token: str, base_url: str | None = None) -> dict[ActionLinkType, str]:
    base = (base_url or settings.app_base_url).rstrip("/")
    return {
        action: f"{base}{ACTION_PATH}?{urlencode({'token': token, 'action': action.value})}"
        for action in ActionLinkType
    }


def _local_end(overdue: OverdueBooking) -> datetime:
    try:
        return overdue.booking.end_time.astimezone(ZoneInfo(overdue.timezone))
    except (ZoneInfoNotFoundError, ValueError):
        return overdue.booking.end_time


def build_reminder(overdue: OverdueBooking, token: str) -> OverdueReminder:
    links = build_action_links(token)
    return OverdueReminder(
        booking_id=overdue.booking.id,
        recipient_email=overdue.recipient_email,
        recipient_name=overdue.recipient_name,
        title=overdue.booking.title,
        room_name=overdue.room_name,
        location_name=overdue.location_name,
        scheduled_end=_local_end(overdue),
        extend_url=links[ActionLinkType.EXTEND],
        release_url=links[ActionLinkType.RELEASE],
        extend_minutes=settings.action_extend_minutes,
    )


def send_overdue_reminders(
    db: Session,
    sender: ReminderSender | None = None,
    now: datetime | None = None,
) -> ReminderRunResult:
    """Email every overdue meeting once with single-use extend/release links.

    A booking is marked as reminded only after its email went out, so a
    failed send is retried on the next run.
    """
    current_time = now or utcnow()
    reminder_sender = sender or LoggingReminderSender()
    overdue_bookings = find_overdue_bookings(db, now=current_time)

    sent = 0
    failed = 0
    for overdue in overdue_bookings:
        token = generate_action_token()
        reminder = build_reminder(overdue, token)
        try:
            reminder_sender.send(reminder)
        except Exception:
            failed += 1
            logger.exception("overdue_reminder_failed booking_id=%s", overdue.booking.id)
            continue
        mark_overdue_reminder_sent(db, overdue.booking.id, token, now=current_time)
        sent += 1

    if overdue_bookings:
        logger.info("overdue_reminders_run processed=%s sent=%s failed=%s", len(overdue_bookings), sent, failed)
    return ReminderRunResult(processed=len(overdue_bookings), sent=sent, failed=failed)
