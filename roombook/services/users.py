from sqlalchemy import func, select
from sqlalchemy.orm import Session

from roombook.db.models import User, UserStatus


def get_active_user_by_email(db: Session, email: str | None) -> User | None:
    if not email:
        return None
    return db.scalar(
        select(User).where(
            func.lower(User.email) == email.strip().lower(),
            User.status == UserStatus.ACTIVE.value,
        )
    )
