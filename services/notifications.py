import logging
from typing import Any, Dict, Optional

from core.config import settings
from core.realtime import ADMIN_CHANNEL, ConnectionRegistry, user_channel
from services.push import PushService
from tasks.push_tasks import deliver_push_task

logger = logging.getLogger(__name__)

EVENT_NEW_ORDER = "newOrder"
EVENT_STATUS_UPDATE = "orderStatusUpdate"
EVENT_SYSTEM_ALERT = "systemAlert"


def push_payload(snapshot: Dict[str, Any], title: str, body: str) -> Dict[str, Any]:
    # Push services cap payloads at ~4KB, so only a summary goes out
    return {
        "title": title,
        "body": body,
        "data": {
            "orderId": snapshot.get("id"),
            "orderNumber": snapshot.get("order_number"),
            "status": snapshot.get("status"),
            "paymentStatus": snapshot.get("payment_status"),
            "total": snapshot.get("total"),
        },
    }


class NotificationDispatcher:
    """Fans order changes out to admins, the owner, and the owner's push endpoints.

    Call only after the change is committed. Every method swallows and logs
    delivery errors: a notification problem never fails the operation that
    triggered it.
    """

    def __init__(self, registry: ConnectionRegistry, push: Optional[PushService] = None):
        self.registry = registry
        self.push = push

    def notify_admins(self, event: str, payload: Any) -> bool:
        try:
            self.registry.broadcast(ADMIN_CHANNEL, event, payload)
            return True
        except Exception as exc:
            logger.warning("Admin broadcast of %s failed: %s", event, exc)
            return False

    def notify_owner(self, user_id: int, event: str, payload: Any) -> bool:
        try:
            self.registry.broadcast(user_channel(user_id), event, payload)
            return True
        except Exception as exc:
            logger.warning("Broadcast of %s to user %s failed: %s", event, user_id, exc)
            return False

    def notify_push(self, user_id: int, payload: Dict[str, Any]) -> None:
        if settings.PUSH_USE_CELERY:
            try:
                deliver_push_task.delay(user_id, payload)
                return
            except Exception as exc:
                logger.warning("Celery unavailable, delivering push inline: %s", exc)

        if self.push is None:
            return
        try:
            self.push.deliver(user_id, payload)
        except Exception:
            logger.error("Push delivery to user %s failed", user_id, exc_info=True)

    def order_created(self, snapshot: Dict[str, Any]) -> None:
        user_id = snapshot["user_id"]
        self.notify_admins(EVENT_NEW_ORDER, snapshot)
        self.notify_owner(user_id, EVENT_STATUS_UPDATE, snapshot)
        self.notify_push(
            user_id,
            push_payload(snapshot, "Order placed", f"Your order #{snapshot['order_number']} has been placed successfully!"),
        )

    def order_status_changed(self, snapshot: Dict[str, Any]) -> None:
        user_id = snapshot["user_id"]
        self.notify_admins(EVENT_STATUS_UPDATE, snapshot)
        self.notify_owner(user_id, EVENT_STATUS_UPDATE, snapshot)
        self.notify_push(
            user_id,
            push_payload(snapshot, "Order update", f"Your order #{snapshot['order_number']} is now {snapshot['status']}"),
        )

    def payment_status_changed(self, snapshot: Dict[str, Any]) -> None:
        self.notify_admins(EVENT_STATUS_UPDATE, snapshot)
        self.notify_owner(snapshot["user_id"], EVENT_STATUS_UPDATE, snapshot)

    def order_deleted(self, snapshot: Dict[str, Any]) -> None:
        self.notify_admins(EVENT_STATUS_UPDATE, {**snapshot, "deleted": True})

    def system_alert(self, message: str, error: str = "") -> None:
        self.notify_admins(EVENT_SYSTEM_ALERT, {"message": message, "error": error})
