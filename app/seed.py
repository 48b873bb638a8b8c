import logging
import uuid

from sqlalchemy.orm import Session
from sqlalchemy import text, delete
from sqlalchemy.exc import OperationalError, ProgrammingError

from app.db.session import SessionLocal
from app.core.config import settings
from app.core.security import hash_password
from app.models.user import User
from app.models.slot import ParkingSlot
from app.models.booking import Booking
from app.services.audit_service import log_audit

logger = logging.getLogger(__name__)


def slot_labels() -> list[str]:
    return [f"{settings.SLOT_PREFIX}{i}" for i in range(1, settings.SLOT_COUNT + 1)]


def ensure_user(db: Session, email: str, password: str, role: str, name: str):
    u = db.query(User).filter(User.email == email).first()
    if u:
        return u
    u = User(
        id=str(uuid.uuid4()),
        email=email,
        full_name=name,
        role=role,
        password_hash=hash_password(password),
        is_active=True,
    )
    db.add(u)
    db.commit()
    return u


def ensure_slots(db: Session) -> int:
    """Create any missing slot of the fixed fleet. Returns how many were added."""
    existing = {s.id for s in db.query(ParkingSlot).all()}
    added = 0
    for label in slot_labels():
        if label not in existing:
            db.add(ParkingSlot(id=label, floor=settings.SLOT_FLOOR, is_active=True))
            added += 1
    if added:
        db.commit()
        logger.info("initialized %d parking slot(s)", added)
    return added


def reset_parking(db: Session, actor_user_id: str | None = None) -> dict:
    """Drop every booking and rebuild the slot fleet with a clean legacy mirror.

    Users are kept so the admin who triggered the reset can keep working.
    """
    bookings = db.execute(delete(Booking)).rowcount
    labels = slot_labels()
    existing = {s.id: s for s in db.query(ParkingSlot).all()}
    for slot_id, slot in existing.items():
        if slot_id not in labels:
            db.delete(slot)
    for label in labels:
        slot = existing.get(label)
        if slot is None:
            db.add(ParkingSlot(id=label, floor=settings.SLOT_FLOOR, is_active=True))
            continue
        slot.floor = settings.SLOT_FLOOR
        slot.is_active = True
        slot.current_booking_id = None
        slot.booked_by = None
    log_audit(db, actor_user_id, "system.reset", "system", "parking", {"bookingsDeleted": bookings})
    db.commit()
    logger.info("reset: %d booking(s) removed, %d slot(s) re-created", bookings, settings.SLOT_COUNT)
    return {
        "bookings": db.query(Booking).count(),
        "slots": db.query(ParkingSlot).count(),
        "users": db.query(User).count(),
        "bookingsDeleted": bookings,
    }


def run(db=None):
    if db is None:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM parking_slots LIMIT 1"))
        except (ProgrammingError, OperationalError):
            db.rollback()
            logger.warning("parking_slots table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        ensure_user(db, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD, "admin", "Admin")
        ensure_slots(db)
    finally:
        db.close()


if __name__ == "__main__":
    from app.core.logging import configure_logging
    configure_logging()
    run()
