#!/usr/bin/env python3
"""
Celery worker for the order service.
Delivers Web Push notifications queued by the notification dispatcher
(enable with PUSH_USE_CELERY=true).
"""

from dotenv import load_dotenv

load_dotenv()

if __name__ == "__main__":
    from core.config import setup_logging
    from core.celery import celery_app

    setup_logging()
    celery_app.start([
        "worker",
        "--loglevel=info",
        "--concurrency=4",
        "--without-gossip",
        "--without-mingle",
    ])
