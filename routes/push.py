from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from core.config import settings
from core.db import get_db
from models.user import User
from routes.auth import get_current_user
from schemas.push import PushSubscriptionIn, PushUnsubscribe, VapidKeyOut
from services.push import PushService

router = APIRouter(prefix="/push", tags=["push"])


@router.get("/vapid-public-key", response_model=VapidKeyOut)
def vapid_public_key():
    if not settings.VAPID_PUBLIC_KEY:
        raise HTTPException(status_code=404, detail="Web push not configured")
    return VapidKeyOut(public_key=settings.VAPID_PUBLIC_KEY)


@router.post("/subscription")
def save_subscription(
    data: PushSubscriptionIn, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    PushService(db).subscribe(current_user.id, data.endpoint, data.keys.p256dh, data.keys.auth)
    return {"detail": "Subscription saved"}


@router.delete("/subscription", status_code=204)
def delete_subscription(
    data: PushUnsubscribe, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    PushService(db).unsubscribe(current_user.id, data.endpoint)
    return None
