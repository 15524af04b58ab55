#!/usr/bin/env python3
"""
Create the default admin account.

Usage:
    python seed_admin.py
    python seed_admin.py --email admin@example.com --password secret123
"""
import argparse
import logging
import sys

from auth import password_fields
from config import Settings, get_settings
from database import USER, Database, connect, utcnow
from logging_config import configure_logging
from schemas import User

logger = logging.getLogger(__name__)

DEFAULT_EMAIL = "admin@example.com"
DEFAULT_PASSWORD = "password123"


def seeding_allowed(settings: Settings) -> bool:
    return settings.ENV.lower() != "production" or settings.DEV_UTILS_ALLOWED


def seed_admin(db: Database, email: str = DEFAULT_EMAIL, password: str = DEFAULT_PASSWORD) -> bool:
    """Insert the admin user. Returns False when the email is already taken."""
    if db[USER].find_one({"email": email}):
        logger.info("Admin user %s already exists", email)
        return False
    now = utcnow()
    admin = User(first_name="Admin", last_name="User", email=email, role="admin")
    db[USER].insert_one({
        **admin.model_dump(by_alias=True),
        **password_fields(password),
        "createdAt": now,
        "updatedAt": now,
    })
    logger.info("Admin user %s created", email)
    return True


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create the default admin user")
    parser.add_argument("--email", default=DEFAULT_EMAIL)
    parser.add_argument("--password", default=DEFAULT_PASSWORD)
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    if not seeding_allowed(settings):
        logger.error("Refusing to seed in production; set DEV_UTILS_ALLOWED=true to override")
        return 1

    db = connect(settings)
    try:
        seed_admin(db, args.email.lower(), args.password)
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
