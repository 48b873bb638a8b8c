from sqlalchemy import String, Integer, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base
from app.db.types import UTCDateTime

ACTIVE = "active"
OCCUPIED = "occupied"
COMPLETED = "completed"
EXPIRED = "expired"
CANCELLED = "cancelled"

STATUSES = (ACTIVE, OCCUPIED, COMPLETED, EXPIRED, CANCELLED)
STATUS_CHECK = "status IN (%s)" % ", ".join(f"'{s}'" for s in STATUSES)
# Statuses that hold a slot's window
HOLDING_STATUSES = (ACTIVE, OCCUPIED)


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    slot_id: Mapped[str] = mapped_column(String(16), index=True)

    duration: Mapped[int] = mapped_column(Integer)  # hours, 1..24
    reserved_at: Mapped[datetime] = mapped_column(UTCDateTime())  # window start
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime())   # window end (exclusive)

    status: Mapped[str] = mapped_column(String(20), default=ACTIVE)  # active, occupied, completed, expired, cancelled
    qr_code: Mapped[str] = mapped_column(String(64), unique=True, index=True)

    entered_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=True)
    exited_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_bookings_user_status", "user_id", "status"),
        Index("ix_bookings_slot_status", "slot_id", "status"),
        Index("ix_bookings_window", "reserved_at", "expires_at"),
        CheckConstraint("duration BETWEEN 1 AND 24", name="ck_bookings_duration"),
        CheckConstraint("expires_at > reserved_at", name="ck_bookings_window"),
        CheckConstraint(STATUS_CHECK, name="ck_bookings_status"),
    )
