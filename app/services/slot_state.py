"""Derived slot status.

A slot's status is never stored: it is computed from the slot's bookings and a
single ``now`` supplied by the caller. Only bookings that hold the slot
(active/occupied) count.

- a holding booking whose [reserved_at, expires_at) contains ``now`` makes the
  slot "occupied" if the car has entered, "booked" otherwise;
- with no such booking the slot is "available", and the earliest future
  reservation is exposed as a ``next_booking`` preview. The preview does not
  change the status: a slot only becomes "booked" once its window begins.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from app.models.booking import Booking, HOLDING_STATUSES
from app.models.slot import ParkingSlot
from app.services.intervals import contains

AVAILABLE = "available"
BOOKED = "booked"
OCCUPIED = "occupied"


@dataclass(frozen=True)
class NextBooking:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class SlotView:
    slot_id: str
    floor: int
    is_active: bool
    status: str
    booked_by: str | None = None
    booking_id: str | None = None
    next_booking: NextBooking | None = None
    upcoming: list[Booking] = field(default_factory=list, compare=False)


def derive_slot_view(slot: ParkingSlot, bookings: Iterable[Booking], now: datetime) -> SlotView:
    holding = [b for b in bookings if b.slot_id == slot.id and b.status in HOLDING_STATUSES]

    current = next((b for b in holding if contains(b.reserved_at, b.expires_at, now)), None)
    future = sorted((b for b in holding if b.reserved_at > now), key=lambda b: b.reserved_at)
    if current is not None:
        return SlotView(
            slot_id=slot.id,
            floor=slot.floor,
            is_active=slot.is_active,
            status=OCCUPIED if current.entered_at else BOOKED,
            booked_by=current.user_id,
            booking_id=current.id,
            upcoming=future,
        )

    preview = NextBooking(start=future[0].reserved_at, end=future[0].expires_at) if future else None
    return SlotView(
        slot_id=slot.id,
        floor=slot.floor,
        is_active=slot.is_active,
        status=AVAILABLE,
        next_booking=preview,
        upcoming=future,
    )


def derive_slot_views(slots: Iterable[ParkingSlot], bookings: Iterable[Booking], now: datetime) -> list[SlotView]:
    by_slot: dict[str, list[Booking]] = defaultdict(list)
    for b in bookings:
        by_slot[b.slot_id].append(b)
    return [derive_slot_view(s, by_slot.get(s.id, []), now) for s in sorted(slots, key=lambda s: s.id)]
