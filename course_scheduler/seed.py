"""
Database initialization script
Creates the tables and the default teacher/student accounts.

Usage: python -m course_scheduler.seed [--reset]
"""

import logging
import sys

from sqlalchemy.orm import Session

from .database import Base, SessionLocal, engine
from .models import ScheduleRequest, TimeSlot, User
from .security_utils import hash_password_bcrypt

logger = logging.getLogger(__name__)

DEFAULT_USERS = [
    {"public_id": "1", "name": "teacher", "password": "teacher123", "role": "teacher"},
    {"public_id": "2", "name": "student1", "password": "student123", "role": "student"},
]


def reset_schedule(db: Session) -> None:
    """Drop every slot and request (users are kept)"""
    deleted_requests = db.query(ScheduleRequest).delete()
    deleted_slots = db.query(TimeSlot).delete()
    db.commit()
    logger.info(f"🧹 Removed {deleted_slots} slot(s) and {deleted_requests} request(s)")


def seed_users(db: Session, users: list[dict] = DEFAULT_USERS) -> int:
    """Insert users whose name is not taken yet; returns how many were created"""
    created = 0
    for entry in users:
        if db.query(User).filter(User.name == entry["name"]).first():
            logger.info(f"User {entry['name']} already exists, skipping")
            continue
        db.add(
            User(
                public_id=entry["public_id"],
                name=entry["name"],
                password_hash=hash_password_bcrypt(entry["password"]),
                role=entry["role"],
            )
        )
        created += 1
    db.commit()
    return created


def main(argv: list[str]) -> int:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    Base.metadata.create_all(bind=engine, checkfirst=True)

    db = SessionLocal()
    try:
        if "--reset" in argv:
            reset_schedule(db)
        created = seed_users(db)
        logger.info(f"✅ Database initialized successfully ({created} user(s) created)")
        return 0
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Database initialization failed: {e}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
