from datetime import datetime
from pydantic import BaseModel
from typing import List, Optional

from app.models.booking import Booking
from app.services.booking_service import effective_status

class BookingCreate(BaseModel):
    slotId: str
    duration: int  # hours, 1..24
    startTime: Optional[datetime] = None  # defaults to now; naive values are UTC

class BookingOut(BaseModel):
    id: str
    userId: str
    slotId: str
    duration: int
    reservedAt: datetime
    expiresAt: datetime
    status: str
    qrCode: str
    enteredAt: Optional[datetime] = None
    exitedAt: Optional[datetime] = None
    cancelledAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None

    @classmethod
    def from_booking(cls, b: Booking, now: datetime) -> "BookingOut":
        return cls(
            id=b.id,
            userId=b.user_id,
            slotId=b.slot_id,
            duration=b.duration,
            reservedAt=b.reserved_at,
            expiresAt=b.expires_at,
            status=effective_status(b, now),
            qrCode=b.qr_code,
            enteredAt=b.entered_at,
            exitedAt=b.exited_at,
            cancelledAt=b.cancelled_at,
            createdAt=b.created_at,
        )

class BookingEnvelope(BaseModel):
    message: str = ""
    booking: BookingOut

class BookingList(BaseModel):
    count: int
    bookings: List[BookingOut]
