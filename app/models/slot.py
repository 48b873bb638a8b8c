from sqlalchemy import String, Integer, Boolean, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base
from app.db.types import UTCDateTime

class ParkingSlot(Base):
    __tablename__ = "parking_slots"

    id: Mapped[str] = mapped_column(String(16), primary_key=True)  # stable label, e.g. A1
    floor: Mapped[int] = mapped_column(Integer, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Legacy mirror for old clients. Display hint only: availability is always
    # derived from bookings (see services.slot_state).
    current_booking_id: Mapped[str] = mapped_column(String(36), nullable=True)
    booked_by: Mapped[str] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        CheckConstraint("floor >= 1", name="ck_parking_slots_floor"),
    )
