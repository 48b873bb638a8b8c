from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.api.deps import get_current_user, request_time
from app.models.user import User
from app.models.booking import Booking
from app.schemas.booking import BookingCreate, BookingOut, BookingEnvelope, BookingList
from app.services import booking_service
from app.services.qr_service import render_qr_png

router = APIRouter(tags=["bookings"])

def _owned(booking: Booking, user: User) -> Booking:
    if booking.user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    return booking

@router.post("/bookings", response_model=BookingEnvelope, status_code=201)
def create_booking(
    body: BookingCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    now: datetime = Depends(request_time),
):
    booking = booking_service.create_booking(db, user.id, body.slotId, body.duration, body.startTime, now=now)
    return BookingEnvelope(message="Booking created successfully", booking=BookingOut.from_booking(booking, now))

# Declared before /bookings/{booking_id}/qr, which would otherwise match /bookings/user/qr
@router.get("/bookings/user/{user_id}", response_model=BookingList)
def list_user_bookings(
    user_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    now: datetime = Depends(request_time),
):
    if user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    items = booking_service.list_user_bookings(db, user_id, now=now)
    return BookingList(count=len(items), bookings=[BookingOut.from_booking(b, now) for b in items])

@router.get("/bookings/{booking_id}", response_model=BookingEnvelope)
def get_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    now: datetime = Depends(request_time),
):
    booking = _owned(booking_service.get_booking(db, booking_id, now=now), user)
    return BookingEnvelope(booking=BookingOut.from_booking(booking, now))

@router.get("/bookings/{booking_id}/qr")
def booking_qr(
    booking_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    now: datetime = Depends(request_time),
):
    """PNG of the booking's QR code, to show at the entry and exit gates."""
    booking = _owned(booking_service.get_booking(db, booking_id, now=now), user)
    return Response(content=render_qr_png(booking.qr_code), media_type="image/png")

@router.delete("/bookings/{booking_id}", response_model=BookingEnvelope)
def cancel_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    now: datetime = Depends(request_time),
):
    booking = booking_service.cancel_booking(db, booking_id, user, now=now)
    return BookingEnvelope(message="Booking cancelled successfully", booking=BookingOut.from_booking(booking, now))
