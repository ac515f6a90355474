from datetime import UTC, date, datetime, time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

PRIVATE_BOOKING_ID_KEY = "roombook_booking_id"


class EventDateTime(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date_time: datetime | None = Field(default=None, alias="dateTime")
    day: date | None = Field(default=None, alias="date")
    time_zone: str | None = Field(default=None, alias="timeZone")

    def as_utc(self) -> datetime | None:
        if self.date_time is not None:
            if self.date_time.tzinfo is None:
                return self.date_time.replace(tzinfo=UTC)
            return self.date_time.astimezone(UTC)
        if self.day is not None:
            # All-day events; Google's end date is already exclusive.
            return datetime.combine(self.day, time.min, tzinfo=UTC)
        return None


class EventPerson(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str | None = None
    resource: bool = False
    response_status: str | None = Field(default=None, alias="responseStatus")


class CalendarEvent(BaseModel):
    """The subset of a Google Calendar event the sync adapter consumes."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    status: str | None = None
    summary: str | None = None
    description: str | None = None
    start: EventDateTime | None = None
    end: EventDateTime | None = None
    organizer: EventPerson | None = None
    attendees: list[EventPerson] = Field(default_factory=list)
    extended_properties: dict[str, Any] | None = Field(default=None, alias="extendedProperties")

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    @property
    def start_at(self) -> datetime | None:
        return self.start.as_utc() if self.start else None

    @property
    def end_at(self) -> datetime | None:
        return self.end.as_utc() if self.end else None

    @property
    def organizer_email(self) -> str | None:
        return self.organizer.email if self.organizer else None

    @property
    def attendee_emails(self) -> list[str]:
        return [person.email for person in self.attendees if person.email and not person.resource]

    @property
    def attendee_response_statuses(self) -> dict[str, str]:
        return {
            person.email: person.response_status or "needsAction"
            for person in self.attendees
            if person.email and not person.resource
        }

    @property
    def private_booking_id(self) -> int | None:
        private = (self.extended_properties or {}).get("private") or {}
        raw = private.get(PRIVATE_BOOKING_ID_KEY)
        try:
            return int(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None
