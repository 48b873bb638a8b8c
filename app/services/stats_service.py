from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.booking import Booking, ACTIVE, OCCUPIED, COMPLETED, CANCELLED, EXPIRED
from app.models.user import User
from app.services.booking_service import utcnow
from app.services.slot_service import list_slot_views
from app.services.slot_state import AVAILABLE, BOOKED, OCCUPIED as SLOT_OCCUPIED


def collect_stats(db: Session, now: datetime | None = None) -> dict:
    """Read-only rollup. Nothing here is stored: slot counts are re-derived at
    ``now`` and booking counts are taken after the lazy expiry sweep, so

        activeBookings + completedBookings + cancelledBookings + expiredBookings == totalBookings
        slots.available + slots.occupied + slots.booked == slots.total
    """
    now = now or utcnow()
    views = list_slot_views(db, now)  # also persists overdue expiries

    by_status = dict(db.execute(select(Booking.status, func.count(Booking.id)).group_by(Booking.status)).all())
    total_users = db.query(func.count(User.id)).scalar() or 0

    return {
        "totalUsers": int(total_users),
        "totalBookings": int(sum(by_status.values())),
        # in-flight work: reserved or parked
        "activeBookings": int(by_status.get(ACTIVE, 0) + by_status.get(OCCUPIED, 0)),
        "occupiedBookings": int(by_status.get(OCCUPIED, 0)),
        "completedBookings": int(by_status.get(COMPLETED, 0)),
        "cancelledBookings": int(by_status.get(CANCELLED, 0)),
        "expiredBookings": int(by_status.get(EXPIRED, 0)),
        "slots": {
            "total": len(views),
            "available": sum(1 for v in views if v.status == AVAILABLE),
            "occupied": sum(1 for v in views if v.status == SLOT_OCCUPIED),
            "booked": sum(1 for v in views if v.status == BOOKED),
        },
    }
