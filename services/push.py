import logging
from typing import Any, Callable, Dict, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.errors import DeliveryFailed, NotFound
from models.push_subscription import PushSubscription
from services.webpush import push_enabled, send_web_push

logger = logging.getLogger(__name__)


class PushService:
    """Durable Web Push subscriptions and best-effort delivery to them."""

    def __init__(
        self,
        db: Session,
        sender: Callable[[Dict[str, Any], Dict[str, Any]], None] = send_web_push,
        enabled: Callable[[], bool] = push_enabled,
    ):
        self.db = db
        self.sender = sender
        self.enabled = enabled

    def subscribe(self, user_id: int, endpoint: str, p256dh: str, auth: str) -> PushSubscription:
        # Endpoints are per browser; a browser that switches accounts moves its subscription
        sub = self.db.query(PushSubscription).filter(PushSubscription.endpoint == endpoint).one_or_none()
        if sub is None:
            sub = PushSubscription(user_id=user_id, endpoint=endpoint, p256dh=p256dh, auth=auth)
            self.db.add(sub)
        else:
            sub.user_id = user_id
            sub.p256dh = p256dh
            sub.auth = auth
        self.db.commit()
        self.db.refresh(sub)
        return sub

    def unsubscribe(self, user_id: int, endpoint: str) -> None:
        sub = (
            self.db.query(PushSubscription)
            .filter(PushSubscription.user_id == user_id, PushSubscription.endpoint == endpoint)
            .one_or_none()
        )
        if not sub:
            raise NotFound("Subscription not found")
        self.db.delete(sub)
        self.db.commit()

    def list_subscriptions(self, user_id: int) -> List[PushSubscription]:
        return (
            self.db.query(PushSubscription)
            .filter(PushSubscription.user_id == user_id)
            .order_by(PushSubscription.id)
            .all()
        )

    def deliver(self, user_id: int, payload: Dict[str, Any]) -> Dict[str, int]:
        """Send ``payload`` to each of the user's endpoints independently.

        An endpoint that fails is purged; the others are still attempted.
        Never raises.
        """
        result = {"sent": 0, "purged": 0}
        if not self.enabled():
            logger.debug("Web push not configured, skipping delivery to user %s", user_id)
            return result

        dead: List[PushSubscription] = []
        for sub in self.list_subscriptions(user_id):
            try:
                self.sender(sub.subscription_info(), payload)
                result["sent"] += 1
            except DeliveryFailed as exc:
                logger.warning(
                    "Push delivery failed for subscription %s (status %s), removing it: %s",
                    sub.id, exc.status_code, exc,
                )
                dead.append(sub)

        if dead:
            try:
                for sub in dead:
                    self.db.delete(sub)
                self.db.commit()
                result["purged"] = len(dead)
            except SQLAlchemyError:
                self.db.rollback()
                logger.error("Could not purge dead push subscriptions for user %s", user_id, exc_info=True)
        return result
