from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError
from app.models.booking import Booking, HOLDING_STATUSES
from app.models.slot import ParkingSlot
from app.services.audit_service import log_audit
from app.services.booking_service import utcnow, expire_overdue_bookings
from app.services.slot_state import SlotView, derive_slot_view, derive_slot_views


def list_slot_views(db: Session, now: datetime | None = None) -> list[SlotView]:
    """All slots with their status derived at one instant."""
    now = now or utcnow()
    expire_overdue_bookings(db, now)
    slots = db.execute(select(ParkingSlot)).scalars().all()
    holding = db.execute(select(Booking).where(Booking.status.in_(HOLDING_STATUSES))).scalars().all()
    return derive_slot_views(slots, holding, now)


def get_slot_view(db: Session, slot_id: str, now: datetime | None = None) -> SlotView:
    now = now or utcnow()
    slot_id = (slot_id or "").strip().upper()
    slot = db.get(ParkingSlot, slot_id)
    if not slot:
        raise NotFoundError(f"slot {slot_id} not found", code="slot_not_found")
    expire_overdue_bookings(db, now, slot_id=slot_id)
    holding = db.execute(
        select(Booking).where(Booking.slot_id == slot_id, Booking.status.in_(HOLDING_STATUSES))
    ).scalars().all()
    return derive_slot_view(slot, holding, now)


def set_slot_active(db: Session, slot_id: str, is_active: bool, actor_user_id: str) -> ParkingSlot:
    """Soft-disable a slot for maintenance. Existing bookings are left alone;
    a disabled slot just can't take new ones."""
    slot = db.get(ParkingSlot, (slot_id or "").strip().upper())
    if not slot:
        raise NotFoundError(f"slot {slot_id} not found", code="slot_not_found")
    slot.is_active = is_active
    log_audit(db, actor_user_id, "slot.set_active", "slot", slot.id, {"isActive": is_active})
    db.commit()
    return slot
