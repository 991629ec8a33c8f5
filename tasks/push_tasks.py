from core.celery import celery_app
from core.db import db_session
from services.push import PushService


@celery_app.task(bind=True, max_retries=0, ignore_result=True)
def deliver_push_task(self, user_id: int, payload: dict):
    """
    Deliver a push payload to every endpoint the user registered.
    Failed endpoints are purged inside PushService; nothing is retried.
    """
    with db_session() as db:
        return PushService(db).deliver(user_id, payload)
