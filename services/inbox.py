import logging
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.errors import NotFound
from models.notification import Notification

logger = logging.getLogger(__name__)


def record(db: Session, user_id: int, message: str, type: str = "order") -> Notification | None:
    """Store an in-app notification; returns None (and logs) if the write fails."""
    try:
        note = Notification(user_id=user_id, message=message, type=type)
        db.add(note)
        db.commit()
        return note
    except SQLAlchemyError:
        db.rollback()
        logger.error("Could not store notification for user %s", user_id, exc_info=True)
        return None


def list_for_user(db: Session, user_id: int, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    qs = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        qs = qs.filter(Notification.is_read.is_(False))
    return qs.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def mark_read(db: Session, user_id: int, notification_id: int) -> Notification:
    note = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .one_or_none()
    )
    if not note:
        raise NotFound("Notification not found")
    note.is_read = True
    db.commit()
    return note
