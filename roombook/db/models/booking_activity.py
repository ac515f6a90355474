from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from roombook.db.base import Base
from roombook.db.types import UTCDateTime


class BookingAction(str, Enum):
    CREATED = "created"
    CHECKED_IN = "checked_in"
    EXTENDED = "extended"
    ENDED_EARLY = "ended_early"
    RELEASED = "released"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    AUTO_ENDED = "auto_ended"
    STATUS_OVERRIDDEN = "status_overridden"
    SYNCED = "synced"


class BookingActivity(Base):
    __tablename__ = "booking_activity"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    booking_id: Mapped[int] = mapped_column(
        ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, server_default=func.now())

    booking = relationship("Booking", back_populates="activities")
