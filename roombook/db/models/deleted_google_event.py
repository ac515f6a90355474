from datetime import datetime

from sqlalchemy import String, func
from sqlalchemy.orm import Mapped, mapped_column

from roombook.db.base import Base
from roombook.db.types import UTCDateTime


class DeletedGoogleEvent(Base):
    """External event removed locally; sync must never bring it back."""

    __tablename__ = "deleted_google_events"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    google_event_id: Mapped[str] = mapped_column(String(1024), unique=True, nullable=False)
    google_calendar_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, server_default=func.now())
