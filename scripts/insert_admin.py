#!/usr/bin/env python3
"""
Seed (or promote) the admin account from ADMIN_EMAIL / ADMIN_PASSWORD.

    python -m scripts.insert_admin
"""

import logging

from core.config import settings, setup_logging
from core.db import db_session, init_db
from models.user import User
from security.password import hash_password

logger = logging.getLogger(__name__)


def insert_admin(db, email: str, password: str, name: str = "Administrator") -> User:
    user = db.query(User).filter(User.email == email.lower()).one_or_none()
    if user:
        if not user.is_admin:
            user.is_admin = True
            logger.info("Promoted existing user %s to admin", user.email)
        else:
            logger.info("Admin %s already exists", user.email)
        return user

    user = User(name=name, email=email.lower(), password_hash=hash_password(password), is_admin=True)
    db.add(user)
    db.flush()
    logger.info("Created admin %s", user.email)
    return user


if __name__ == "__main__":
    setup_logging()
    init_db()
    with db_session() as db:
        insert_admin(db, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
