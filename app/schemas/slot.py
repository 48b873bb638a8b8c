from datetime import datetime
from pydantic import BaseModel
from typing import List, Optional

from app.services.slot_state import SlotView

class NextBookingOut(BaseModel):
    start: datetime
    end: datetime

class SlotOut(BaseModel):
    id: str
    floor: int
    isActive: bool
    status: str  # available, booked, occupied
    bookedBy: Optional[str] = None
    bookingId: Optional[str] = None
    nextBooking: Optional[NextBookingOut] = None

    @classmethod
    def from_view(cls, v: SlotView) -> "SlotOut":
        return cls(
            id=v.slot_id,
            floor=v.floor,
            isActive=v.is_active,
            status=v.status,
            bookedBy=v.booked_by,
            bookingId=v.booking_id,
            nextBooking=NextBookingOut(start=v.next_booking.start, end=v.next_booking.end) if v.next_booking else None,
        )

class SlotList(BaseModel):
    serverTime: datetime
    slots: List[SlotOut]

class WindowOut(BaseModel):
    start: datetime
    end: datetime

class SlotDetail(SlotOut):
    serverTime: datetime
    upcoming: List[WindowOut] = []

class SlotPatch(BaseModel):
    isActive: bool
