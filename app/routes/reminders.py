"""
Release reminder routes.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from ..database import get_db
from ..models.user import User
from ..auth import get_required_user
from ..schemas.email_schedule import EmailScheduleResponse
from ..services.reminders import ReleaseReminderScheduler

router = APIRouter(prefix="/api/reminders", tags=["reminders"])


@router.get("", response_model=List[EmailScheduleResponse])
def get_reminders(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Get the current user's release reminders, latest first."""
    return ReleaseReminderScheduler(db).list_for_user(current_user.id)
