from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from roombook.db.base import Base
from roombook.db.types import UTCDateTime


class RoomStatus(str, Enum):
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    DISABLED = "disabled"


class Room(Base):
    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    location_id: Mapped[int] = mapped_column(
        ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    capacity: Mapped[int] = mapped_column(nullable=False, default=1)
    google_calendar_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    google_resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    device_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    allow_walk_up_booking: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )
    max_booking_duration_minutes: Mapped[int | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RoomStatus.ACTIVE.value)
    # Bumped inside booking transactions to serialise writers on databases without row locks.
    lock_version: Mapped[int] = mapped_column(nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, server_default=func.now())

    location = relationship("Location", back_populates="rooms")
    bookings = relationship("Booking", back_populates="room")
