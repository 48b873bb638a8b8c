import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import ParkingError, ValidationError, NotFoundError, ConflictError, ForbiddenError
from app.db.types import as_utc
from app.models.booking import Booking, ACTIVE, EXPIRED, CANCELLED, HOLDING_STATUSES
from app.models.slot import ParkingSlot
from app.models.user import User
from app.services.audit_service import log_audit
from app.services.intervals import overlaps, contains
from app.services.locks import slot_locks, booking_locks

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_qr_code() -> str:
    return f"{settings.QR_CODE_PREFIX}{uuid.uuid4()}"


def effective_status(booking: Booking, now: datetime) -> str:
    """Status as the outside world must see it: active past its window reads as expired."""
    if booking.status == ACTIVE and now > booking.expires_at:
        return EXPIRED
    return booking.status


# -------------------------
# Legacy slot mirror (display hint only)
# -------------------------
def point_mirror_at(db: Session, booking: Booking) -> None:
    slot = db.get(ParkingSlot, booking.slot_id)
    if slot:
        slot.current_booking_id = booking.id
        slot.booked_by = booking.user_id


def release_mirror(db: Session, booking: Booking) -> None:
    slot = db.get(ParkingSlot, booking.slot_id)
    if slot and slot.current_booking_id == booking.id:
        slot.current_booking_id = None
        slot.booked_by = None


# -------------------------
# Passive expiry
# -------------------------
def expire_overdue_bookings(db: Session, now: datetime | None = None, *, slot_id: str | None = None,
                            user_id: str | None = None, booking_id: str | None = None, commit: bool = True) -> int:
    """Persist active -> expired for bookings whose window has passed without entry.

    The UPDATE is guarded on status so a concurrent entry scan is never overwritten.
    """
    now = now or utcnow()
    q = select(Booking.id).where(Booking.status == ACTIVE, Booking.expires_at < now)
    if slot_id is not None:
        q = q.where(Booking.slot_id == slot_id)
    if user_id is not None:
        q = q.where(Booking.user_id == user_id)
    if booking_id is not None:
        q = q.where(Booking.id == booking_id)
    ids = list(db.execute(q).scalars().all())
    if not ids:
        return 0

    res = db.execute(
        update(Booking)
        .where(Booking.id.in_(ids), Booking.status == ACTIVE)
        .values(status=EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    expired = res.rowcount
    db.execute(
        update(ParkingSlot)
        .where(ParkingSlot.current_booking_id.in_(ids))
        .values(current_booking_id=None, booked_by=None)
        .execution_options(synchronize_session=False)
    )
    # Reload anything this session already holds for the touched rows.
    id_set = set(ids)
    for obj in list(db.identity_map.values()):
        if (isinstance(obj, Booking) and obj.id in id_set) or \
                (isinstance(obj, ParkingSlot) and obj.current_booking_id in id_set):
            db.expire(obj)
    if commit:
        db.commit()
    if expired:
        logger.info("expired %d overdue booking(s)", expired)
    return expired


# -------------------------
# Create
# -------------------------
def _validate_duration(duration) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(duration, bool) or not isinstance(duration, int):
        raise ValidationError("duration must be a whole number of hours", code="invalid_duration")
    if not settings.MIN_DURATION_HOURS <= duration <= settings.MAX_DURATION_HOURS:
        raise ValidationError(
            f"duration must be between {settings.MIN_DURATION_HOURS} and {settings.MAX_DURATION_HOURS} hours",
            code="invalid_duration",
        )
    return duration


def create_booking(db: Session, user_id: str, slot_id: str, duration: int,
                   start_time: datetime | None = None, now: datetime | None = None) -> Booking:
    now = now or utcnow()
    if not user_id:
        raise ValidationError("userId is required", code="missing_user_id")
    slot_id = (slot_id or "").strip().upper()
    if not slot_id:
        raise ValidationError("slotId is required", code="missing_slot_id")
    duration = _validate_duration(duration)

    start = as_utc(start_time) if start_time is not None else now
    end = start + timedelta(hours=duration)
    if end <= now:
        raise ValidationError("the requested window has already ended", code="window_in_past")

    # Check-then-insert must not interleave with another create for the same slot.
    with slot_locks.hold(slot_id):
        try:
            slot = db.execute(
                select(ParkingSlot).where(ParkingSlot.id == slot_id).with_for_update()
            ).scalar_one_or_none()
            if not slot or not slot.is_active:
                raise NotFoundError(f"slot {slot_id} not found", code="slot_not_found")

            expire_overdue_bookings(db, now, slot_id=slot_id, commit=False)
            holding = db.execute(
                select(Booking).where(Booking.slot_id == slot_id, Booking.status.in_(HOLDING_STATUSES))
            ).scalars().all()
            for other in holding:
                if overlaps(start, end, other.reserved_at, other.expires_at):
                    logger.info("booking conflict on %s: %s-%s overlaps %s", slot_id, start, end, other.id)
                    raise ConflictError("slot is not available for the selected time", code="slot_unavailable")

            # qr_code must be unique
            for _ in range(10):
                qr = make_qr_code()
                if not db.execute(select(Booking.id).where(Booking.qr_code == qr)).first():
                    break
            else:
                raise ConflictError("could not allocate a qr code", code="qr_allocation_failed")

            booking = Booking(
                id=str(uuid.uuid4()),
                user_id=user_id,
                slot_id=slot_id,
                duration=duration,
                reserved_at=start,
                expires_at=end,
                status=ACTIVE,
                qr_code=qr,
            )
            db.add(booking)
            if contains(start, end, now):
                point_mirror_at(db, booking)
            log_audit(db, user_id, "booking.create", "booking", booking.id,
                      {"slotId": slot_id, "reservedAt": start.isoformat(), "expiresAt": end.isoformat()})
            db.commit()
        except ParkingError:
            db.rollback()
            raise

    logger.info("booking %s created on %s for user %s (%s -> %s)", booking.id, slot_id, user_id, start, end)
    return booking


# -------------------------
# Read
# -------------------------
def get_booking(db: Session, booking_id: str, now: datetime | None = None) -> Booking:
    now = now or utcnow()
    expire_overdue_bookings(db, now, booking_id=booking_id)
    booking = db.get(Booking, booking_id, populate_existing=True)
    if not booking:
        raise NotFoundError("booking not found", code="booking_not_found")
    return booking


def list_user_bookings(db: Session, user_id: str, now: datetime | None = None) -> list[Booking]:
    now = now or utcnow()
    expire_overdue_bookings(db, now, user_id=user_id)
    return list(db.execute(
        select(Booking).where(Booking.user_id == user_id).order_by(Booking.reserved_at.desc())
    ).scalars().all())


# -------------------------
# Cancel
# -------------------------
def cancel_booking(db: Session, booking_id: str, requester: User, now: datetime | None = None) -> Booking:
    now = now or utcnow()
    found = db.get(Booking, booking_id)
    if not found:
        raise NotFoundError("booking not found", code="booking_not_found")

    # Same lock as the gate: a cancel must not race an entry scan.
    with booking_locks.hold(found.qr_code):
        try:
            booking = db.execute(
                select(Booking).where(Booking.id == booking_id).with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one()
            if booking.user_id != requester.id and not requester.is_admin:
                raise ForbiddenError("only the booking owner can cancel it", code="not_owner")
            if booking.entered_at is not None:
                raise ForbiddenError("booking has been entered; it must complete via the exit gate",
                                     code="already_entered")
            if effective_status(booking, now) != ACTIVE:
                expire_overdue_bookings(db, now, booking_id=booking.id, commit=False)
                db.commit()
                raise ConflictError(f"booking is {effective_status(booking, now)} and can't be cancelled",
                                    code="not_cancellable")

            # The expiry sweep may commit between the read above and this write.
            cancelled = db.execute(
                update(Booking)
                .where(Booking.id == booking.id, Booking.status == ACTIVE, Booking.entered_at.is_(None))
                .values(status=CANCELLED, cancelled_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            ).rowcount
            if not cancelled:
                db.rollback()
                raise ConflictError(f"booking is {db.get(Booking, booking_id).status} and can't be cancelled",
                                    code="not_cancellable")
            release_mirror(db, booking)
            log_audit(db, requester.id, "booking.cancel", "booking", booking.id, {"slotId": booking.slot_id})
            db.commit()
            db.refresh(booking)
        except ParkingError:
            db.rollback()
            raise

    logger.info("booking %s cancelled by %s", booking.id, requester.id)
    return booking
