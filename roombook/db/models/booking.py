from datetime import date, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, CheckConstraint, Date, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from roombook.db.base import Base
from roombook.db.types import UTCDateTime


class BookingStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    ENDED = "ended"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class BookingSource(str, Enum):
    TABLET = "tablet"
    WEB = "web"
    GOOGLE = "google"
    ADMIN = "admin"


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_bookings_time_range"),
        Index("ix_bookings_room_window", "room_id", "start_time", "end_time"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="RESTRICT"), nullable=False, index=True)
    host_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    organizer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BookingStatus.SCHEDULED.value, index=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default=BookingSource.WEB.value)
    check_in_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    extended_count: Mapped[int] = mapped_column(nullable=False, default=0, server_default="0")
    attendee_emails: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    attendee_response_statuses: Mapped[dict[str, str]] = mapped_column(JSON, nullable=False, default=dict)

    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    recurring_parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("bookings.id", ondelete="CASCADE"), nullable=True, index=True
    )
    recurrence_rule: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    recurrence_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    google_event_id: Mapped[str | None] = mapped_column(String(1024), unique=True, nullable=True)
    google_calendar_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    action_token: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    action_token_issued_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    overdue_reminder_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, server_default=func.now())

    room = relationship("Room", back_populates="bookings")
    host = relationship("User", back_populates="hosted_bookings")
    parent = relationship("Booking", remote_side="Booking.id", back_populates="occurrences")
    occurrences = relationship("Booking", back_populates="parent", order_by="Booking.start_time")
    activities = relationship(
        "BookingActivity",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingActivity.id",
    )

    @property
    def is_series_root(self) -> bool:
        return self.is_recurring and self.recurring_parent_id is None

    @property
    def series_id(self) -> int | None:
        if self.recurring_parent_id is not None:
            return self.recurring_parent_id
        return self.id if self.is_recurring else None
