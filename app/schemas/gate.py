from datetime import datetime
from pydantic import BaseModel
from typing import Optional

class GateScanIn(BaseModel):
    qrCode: Optional[str] = None

class GateOut(BaseModel):
    valid: bool
    action: str  # open_gate | deny
    message: str
    reason: Optional[str] = None
    bookingId: Optional[str] = None
    slotId: Optional[str] = None
    expiresAt: Optional[datetime] = None
    duration: Optional[int] = None
    enteredAt: Optional[datetime] = None
    exitedAt: Optional[datetime] = None
    actualDurationMinutes: Optional[int] = None
