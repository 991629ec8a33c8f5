import json
import logging
from typing import Any, Dict

from pywebpush import WebPushException, webpush

from core.config import settings
from core.errors import DeliveryFailed

logger = logging.getLogger(__name__)

PUSH_TTL_SECONDS = 24 * 60 * 60


def push_enabled() -> bool:
    return bool(settings.VAPID_PRIVATE_KEY and settings.VAPID_PUBLIC_KEY)


def send_web_push(subscription_info: Dict[str, Any], payload: Dict[str, Any]) -> None:
    """Deliver one payload to one browser endpoint; raises DeliveryFailed."""
    try:
        webpush(
            subscription_info=subscription_info,
            data=json.dumps(payload),
            vapid_private_key=settings.VAPID_PRIVATE_KEY,
            vapid_claims={"sub": settings.VAPID_CLAIMS_EMAIL},
            ttl=PUSH_TTL_SECONDS,
        )
    except WebPushException as exc:
        status_code = getattr(exc.response, "status_code", None)
        raise DeliveryFailed(f"Push to endpoint failed: {exc}", status_code=status_code) from exc
