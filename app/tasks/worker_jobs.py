import logging
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError, ProgrammingError
from app.db.session import SessionLocal
from app.services import booking_service

logger = logging.getLogger(__name__)

def expire_overdue_bookings(db: Session | None = None, now: datetime | None = None) -> dict:
    """Background half of passive expiry; read paths do the same lazily."""
    owns_session = db is None
    db = db or SessionLocal()
    try:
        try:
            expired = booking_service.expire_overdue_bookings(db, now)
        except (ProgrammingError, OperationalError):
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            logger.warning("expiry sweep skipped: bookings table missing")
            return {"skipped": True, "reason": "missing_tables"}
        return {"expired": expired}
    finally:
        if owns_session:
            db.close()
