from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.db import get_db
from models.user import User
from routes.auth import get_current_user
from schemas.notification import NotificationOut
from services import inbox

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/", response_model=List[NotificationOut])
def list_notifications(
    unread: bool = False, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return inbox.list_for_user(db, current_user.id, unread_only=unread)


@router.post("/{notification_id}/read", response_model=NotificationOut)
def mark_notification_read(
    notification_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return inbox.mark_read(db, current_user.id, notification_id)
