from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from roombook.api.deps import get_reminder_sender, require_cron_secret
from roombook.db.session import get_db
from roombook.schemas.booking import ReminderRunResponse
from roombook.services.notifications import ReminderSender, send_overdue_reminders

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


@router.post("/overdue-reminders", response_model=ReminderRunResponse, status_code=status.HTTP_200_OK)
def run_overdue_reminders(
    sender: ReminderSender = Depends(get_reminder_sender),
    db: Session = Depends(get_db),
) -> ReminderRunResponse:
    result = send_overdue_reminders(db, sender)
    return ReminderRunResponse(processed=result.processed, sent=result.sent, failed=result.failed)
