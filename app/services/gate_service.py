"""Entry/exit gate verification.

Each booking moves NOT_ENTERED -> ENTERED -> EXITED and never back. A scan
that does not advance the booking is a denial, returned as a ``GateDecision``
with a reason code rather than raised. Re-scanning a code
that was just accepted is always denied (replay protection).
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.exceptions import ValidationError, NotFoundError, ConflictError, ForbiddenError, ExpiredError
from app.models.booking import Booking, ACTIVE, OCCUPIED, COMPLETED, EXPIRED, CANCELLED
from app.services.audit_service import log_audit
from app.services.booking_service import utcnow, point_mirror_at, release_mirror, expire_overdue_bookings
from app.services.locks import booking_locks

logger = logging.getLogger(__name__)

NOT_FOUND = "not_found"
ALREADY_ENTERED = "already_entered"
TOO_EARLY = "too_early"
EXPIRED_WINDOW = "expired"
NOT_ENTERED = "not_entered"
ALREADY_EXITED = "already_exited"

# Denial reason -> error class whose status code the API answers with
DENIAL_ERRORS = {
    NOT_FOUND: NotFoundError,
    ALREADY_ENTERED: ConflictError,
    ALREADY_EXITED: ConflictError,
    NOT_ENTERED: ValidationError,
    TOO_EARLY: ForbiddenError,
    EXPIRED_WINDOW: ExpiredError,
}

MESSAGES = {
    NOT_FOUND: "Invalid QR code or booking not found",
    ALREADY_ENTERED: "Already entered. Use this QR code at exit.",
    TOO_EARLY: "Booking window has not started yet",
    EXPIRED_WINDOW: "QR code expired",
    NOT_ENTERED: "Please use entry gate first",
    ALREADY_EXITED: "Already exited",
}


@dataclass
class GateDecision:
    granted: bool
    message: str
    reason: str | None = None
    booking: Booking | None = None
    actual_duration_minutes: int | None = None

    @property
    def status_code(self) -> int:
        return 200 if self.granted else DENIAL_ERRORS[self.reason].status_code


def _lock_booking(db: Session, qr_code: str) -> Booking | None:
    return db.execute(
        select(Booking).where(Booking.qr_code == qr_code).with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _deny(db: Session, action: str, reason: str, qr_code: str, booking: Booking | None) -> GateDecision:
    log_audit(db, None, f"{action}.denied", "booking", booking.id if booking else "",
              {"reason": reason, "qrCode": qr_code})
    db.commit()
    logger.info("%s denied (%s) for %s", action, reason, booking.id if booking else qr_code)
    return GateDecision(granted=False, reason=reason, message=MESSAGES[reason], booking=booking)


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes, rounded half up, never negative."""
    seconds = (end - start).total_seconds()
    return max(0, int(seconds / 60 + 0.5))


def _clean(qr_code: str | None) -> str:
    qr_code = (qr_code or "").strip()
    if not qr_code:
        raise ValidationError("qrCode is required", code="missing_qr_code")
    return qr_code


def _known(db: Session, qr_code: str) -> bool:
    return db.execute(select(Booking.id).where(Booking.qr_code == qr_code)).first() is not None


def _entry_denial(booking: Booking | None, now: datetime) -> str | None:
    if booking is None or booking.status == CANCELLED:
        return NOT_FOUND
    if booking.entered_at is not None:
        return ALREADY_ENTERED
    # Same answer whether or not the expiry sweep got here first.
    if booking.status == EXPIRED:
        return EXPIRED_WINDOW
    if now < booking.reserved_at:
        return TOO_EARLY
    return None


def verify_entry(db: Session, qr_code: str, now: datetime | None = None) -> GateDecision:
    now = now or utcnow()
    qr_code = _clean(qr_code)
    if not _known(db, qr_code):
        return _deny(db, "gate.entry", NOT_FOUND, qr_code, None)

    with booking_locks.hold(qr_code):
        booking = _lock_booking(db, qr_code)
        reason = _entry_denial(booking, now)
        if reason:
            return _deny(db, "gate.entry", reason, qr_code, booking)
        if now > booking.expires_at:
            # Terminal: this booking can never be entered now.
            expire_overdue_bookings(db, now, booking_id=booking.id, commit=False)
            return _deny(db, "gate.entry", EXPIRED_WINDOW, qr_code, booking)

        # The expiry sweep does not take booking_locks, so the grant only
        # lands on a row that is still active and not entered.
        granted = db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == ACTIVE, Booking.entered_at.is_(None))
            .values(status=OCCUPIED, entered_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        if not granted:
            db.rollback()
            booking = _lock_booking(db, qr_code)
            return _deny(db, "gate.entry", _entry_denial(booking, now) or EXPIRED_WINDOW, qr_code, booking)

        point_mirror_at(db, booking)
        log_audit(db, None, "gate.entry", "booking", booking.id, {"slotId": booking.slot_id})
        db.commit()
        db.refresh(booking)

    logger.info("entry granted for booking %s on %s", booking.id, booking.slot_id)
    return GateDecision(granted=True, message="Access granted - Welcome!", booking=booking)


def verify_exit(db: Session, qr_code: str, now: datetime | None = None) -> GateDecision:
    now = now or utcnow()
    qr_code = _clean(qr_code)
    if not _known(db, qr_code):
        return _deny(db, "gate.exit", NOT_FOUND, qr_code, None)

    with booking_locks.hold(qr_code):
        booking = _lock_booking(db, qr_code)
        # Exit is looked up by code alone: by now the booking is occupied, not active.
        if booking is None:
            return _deny(db, "gate.exit", NOT_FOUND, qr_code, None)
        if booking.entered_at is None:
            return _deny(db, "gate.exit", NOT_ENTERED, qr_code, booking)
        if booking.exited_at is not None:
            return _deny(db, "gate.exit", ALREADY_EXITED, qr_code, booking)

        booking.exited_at = now
        booking.status = COMPLETED
        release_mirror(db, booking)
        minutes = minutes_between(booking.entered_at, booking.exited_at)
        log_audit(db, None, "gate.exit", "booking", booking.id,
                  {"slotId": booking.slot_id, "actualDurationMinutes": minutes})
        db.commit()

    logger.info("exit granted for booking %s on %s after %d min", booking.id, booking.slot_id, minutes)
    return GateDecision(granted=True, message="Exit granted - Thank you!", booking=booking,
                        actual_duration_minutes=minutes)
