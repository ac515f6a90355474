from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import AwareDatetime, BaseModel, EmailStr, Field, computed_field

from roombook.db.models import BookingSource, BookingStatus
from roombook.schemas.recurrence import RecurrenceRule
from roombook.services.booking_status import DisplayStatus, normalize_booking_status


class BookingCreateRequest(BaseModel):
    room_id: int
    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    start_time: AwareDatetime
    end_time: AwareDatetime
    host_user_id: int | None = None
    organizer_email: EmailStr | None = None
    attendee_emails: list[EmailStr] = Field(default_factory=list, max_length=100)
    source: BookingSource = BookingSource.WEB


class QuickBookingRequest(BaseModel):
    room_id: int
    duration_minutes: int = Field(ge=1)
    title: str = Field(default="Walk-up meeting", min_length=1, max_length=200)
    host_user_id: int | None = None
    organizer_email: EmailStr | None = None


class RecurringBookingCreateRequest(BookingCreateRequest):
    recurrence_rule: RecurrenceRule
    recurrence_end_date: date | None = None


class BookingExtendRequest(BaseModel):
    additional_minutes: int


class BookingStatusOverrideRequest(BaseModel):
    status: BookingStatus


class ActionLinkType(str, Enum):
    EXTEND = "extend"
    RELEASE = "release"


class BookingResponse(BaseModel):
    id: int
    room_id: int
    host_user_id: int | None
    organizer_email: str | None
    attendee_emails: list[str]
    attendee_response_statuses: dict[str, str]
    title: str
    description: str | None
    start_time: datetime
    end_time: datetime
    status: str
    source: str
    check_in_time: datetime | None
    extended_count: int
    is_recurring: bool
    recurring_parent_id: int | None
    recurrence_rule: dict[str, Any] | None
    recurrence_end_date: date | None
    google_event_id: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def display_status(self) -> DisplayStatus:
        return normalize_booking_status(self)


class BookingConflictResponse(BaseModel):
    booking_id: int
    title: str
    organizer: str | None
    start: datetime
    end: datetime

    @classmethod
    def from_conflict(cls, conflict: Any) -> "BookingConflictResponse":
        return cls(
            booking_id=conflict.booking_id,
            title=conflict.title,
            organizer=conflict.organizer,
            start=conflict.start_time,
            end=conflict.end_time,
        )


class SkippedOccurrenceResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    conflict: BookingConflictResponse


class RecurringBookingResponse(BaseModel):
    series_id: int
    created_count: int
    expected_count: int
    bookings: list[BookingResponse]
    skipped: list[SkippedOccurrenceResponse]


class CancelBookingResponse(BaseModel):
    booking: BookingResponse
    already_cancelled: bool


class SeriesCancelResponse(BaseModel):
    series_id: int
    cancelled_count: int


class ExtensionAvailabilityResponse(BaseModel):
    can_extend: bool
    new_end_time: datetime
    conflict: BookingConflictResponse | None = None


class NoShowScanResponse(BaseModel):
    updated_count: int
    grace_minutes: int


class GoogleSyncResponse(BaseModel):
    room_id: int
    synced: int
    created: int
    updated: int
    cancelled: int
    linked: int
    suppressed: int
    skip_reason: str | None


class ActionResultResponse(BaseModel):
    action: ActionLinkType
    message: str
    booking: BookingResponse


class ReminderRunResponse(BaseModel):
    processed: int
    sent: int
    failed: int


class SeriesSummaryResponse(BaseModel):
    series_id: int
    title: str
    room_id: int
    recurrence_rule: dict[str, Any] | None
    recurrence_end_date: date | None
    occurrence_count: int
    next_occurrence: datetime | None


class GoogleSyncRequest(BaseModel):
    room_id: int | None = None


class GoogleSyncAllResponse(BaseModel):
    processed: int
    synced: int
    results: list[GoogleSyncResponse]
    failed_room_ids: list[int]


class SeriesDetailResponse(SeriesSummaryResponse):
    occurrences: list[BookingResponse]


class DeleteBookingResponse(BaseModel):
    deleted_count: int
