from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from roombook.core.config import settings
from roombook.core.security import verify_bearer_secret
from roombook.db.models import User
from roombook.db.session import get_db
from roombook.services.google_calendar import CalendarClient, get_calendar_client
from roombook.services.notifications import LoggingReminderSender, ReminderSender


def get_calendar() -> CalendarClient | None:
    return get_calendar_client()


def get_reminder_sender() -> ReminderSender:
    return LoggingReminderSender()


def get_actor_user_id(
    actor_user_id: Annotated[int | None, Header(alias="X-Actor-User-Id")] = None,
    db: Session = Depends(get_db),
) -> int | None:
    """Optional acting user, recorded in the activity log only."""
    if actor_user_id is None:
        return None
    return actor_user_id if db.get(User, actor_user_id) is not None else None


def require_cron_secret(authorization: Annotated[str | None, Header()] = None) -> None:
    if not verify_bearer_secret(authorization, settings.cron_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret",
            headers={"WWW-Authenticate": "Bearer"},
        )
