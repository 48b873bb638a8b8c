import random
import threading
from datetime import timedelta

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from conftest import NOW, at
from app.core.exceptions import ValidationError, NotFoundError, ConflictError, ForbiddenError
from app.models.booking import Booking, HOLDING_STATUSES
from app.models.slot import ParkingSlot
from app.services import booking_service, gate_service
from app.services.intervals import overlaps
from app.services.slot_service import get_slot_view


def _count(db):
    return db.execute(select(func.count(Booking.id))).scalar()


class TestCreateBooking:

    def test_defaults_to_now(self, db, alice):
        b = booking_service.create_booking(db, alice.id, "A1", 2, now=NOW)
        assert b.status == "active"
        assert b.reserved_at == NOW
        assert b.expires_at == NOW + timedelta(hours=2)
        assert b.qr_code.startswith("PARKING-")
        assert b.entered_at is None and b.exited_at is None

    def test_explicit_start_and_slot_normalisation(self, db, alice):
        b = booking_service.create_booking(db, alice.id, " a2 ", 1, start_time=at(3), now=NOW)
        assert b.slot_id == "A2"
        assert b.reserved_at == at(3)
        assert b.expires_at == at(4)

    def test_naive_start_is_utc(self, db, alice):
        b = booking_service.create_booking(db, alice.id, "A1", 1, start_time=at(3).replace(tzinfo=None), now=NOW)
        assert b.reserved_at == at(3)

    def test_qr_codes_are_unique(self, db, alice):
        codes = {booking_service.create_booking(db, alice.id, "A1", 1, start_time=at(h), now=NOW).qr_code
                 for h in range(5)}
        assert len(codes) == 5

    @pytest.mark.parametrize("duration", [0, 25, -1, 1.5, "2", True, None])
    def test_rejects_bad_duration(self, db, alice, duration):
        with pytest.raises(ValidationError):
            booking_service.create_booking(db, alice.id, "A1", duration, now=NOW)
        assert _count(db) == 0

    def test_accepts_duration_bounds(self, db, alice):
        booking_service.create_booking(db, alice.id, "A1", 1, now=NOW)
        booking_service.create_booking(db, alice.id, "A2", 24, now=NOW)

    def test_missing_slot_id(self, db, alice):
        with pytest.raises(ValidationError):
            booking_service.create_booking(db, alice.id, "", 1, now=NOW)

    def test_unknown_slot(self, db, alice):
        with pytest.raises(NotFoundError):
            booking_service.create_booking(db, alice.id, "Z9", 1, now=NOW)

    def test_inactive_slot(self, db, alice):
        db.get(ParkingSlot, "A3").is_active = False
        db.commit()
        with pytest.raises(NotFoundError):
            booking_service.create_booking(db, alice.id, "A3", 1, now=NOW)

    def test_window_already_over(self, db, alice):
        with pytest.raises(ValidationError):
            booking_service.create_booking(db, alice.id, "A1", 1, start_time=at(-3), now=NOW)

    def test_overlap_conflicts_and_writes_nothing(self, db, alice, bob):
        booking_service.create_booking(db, alice.id, "A1", 2, now=NOW)
        with pytest.raises(ConflictError):
            booking_service.create_booking(db, bob.id, "A1", 1, start_time=at(1), now=NOW)
        assert _count(db) == 1

    def test_abutting_windows_are_allowed(self, db, alice, bob):
        booking_service.create_booking(db, alice.id, "A1", 2, now=NOW)
        b = booking_service.create_booking(db, bob.id, "A1", 1, start_time=at(2), now=NOW)
        assert b.reserved_at == at(2)
        earlier = booking_service.create_booking(db, bob.id, "A1", 1, start_time=at(-1), now=at(-1))
        assert earlier.expires_at == NOW

    def test_same_window_other_slot_is_fine(self, db, alice, bob):
        booking_service.create_booking(db, alice.id, "A1", 2, now=NOW)
        booking_service.create_booking(db, bob.id, "A2", 2, now=NOW)

    def test_occupied_booking_still_blocks(self, db, alice, bob):
        b = booking_service.create_booking(db, alice.id, "A1", 2, now=NOW)
        assert gate_service.verify_entry(db, b.qr_code, now=at(0.1)).granted
        with pytest.raises(ConflictError):
            booking_service.create_booking(db, bob.id, "A1", 1, start_time=at(1), now=at(0.2))

    def test_cancelled_booking_frees_its_window(self, db, alice, bob):
        b = booking_service.create_booking(db, alice.id, "A1", 2, now=NOW)
        booking_service.cancel_booking(db, b.id, alice, now=NOW)
        booking_service.create_booking(db, bob.id, "A1", 2, now=NOW)

    def test_derived_status_right_after_create(self, db, alice):
        b = booking_service.create_booking(db, alice.id, "A1", 2, start_time=at(1), now=NOW)
        assert get_slot_view(db, "A1", b.reserved_at).status == "booked"

    def test_legacy_mirror_follows_current_booking(self, db, alice):
        b = booking_service.create_booking(db, alice.id, "A1", 2, now=NOW)
        slot = db.get(ParkingSlot, "A1")
        assert slot.current_booking_id == b.id
        assert slot.booked_by == alice.id

        future = booking_service.create_booking(db, alice.id, "A2", 1, start_time=at(5), now=NOW)
        assert db.get(ParkingSlot, "A2").current_booking_id is None

        booking_service.cancel_booking(db, b.id, alice, now=NOW)
        booking_service.cancel_booking(db, future.id, alice, now=NOW)
        assert db.get(ParkingSlot, "A1").current_booking_id is None


class TestConcurrentCreate:

    def test_overlapping_creates_exactly_one_wins(self, session_factory, db, alice, bob):
        barrier = threading.Barrier(2)
        results = []
        lock = threading.Lock()

        def worker(user_id, start):
            s = session_factory()
            try:
                barrier.wait()
                b = booking_service.create_booking(s, user_id, "A1", 2, start_time=start, now=NOW)
                outcome = ("ok", b.id)
            except ConflictError:
                outcome = ("conflict", None)
            finally:
                s.close()
            with lock:
                results.append(outcome)

        threads = [
            threading.Thread(target=worker, args=(alice.id, at(0))),
            threading.Thread(target=worker, args=(bob.id, at(1))),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(r[0] for r in results) == ["conflict", "ok"]
        assert _count(db) == 1

    def test_many_threads_same_window(self, session_factory, db, make_user):
        users = [make_user() for _ in range(6)]
        barrier = threading.Barrier(len(users))
        wins = []

        def worker(user):
            s = session_factory()
            try:
                barrier.wait()
                booking_service.create_booking(s, user.id, "A4", 3, start_time=at(1), now=NOW)
                wins.append(user.id)
            except ConflictError:
                pass
            finally:
                s.close()

        threads = [threading.Thread(target=worker, args=(u,)) for u in users]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert len(wins) == 1
        assert _count(db) == 1


def test_no_two_holding_bookings_overlap_after_random_operations(db, make_user):
    rng = random.Random(20260302)
    users = [make_user() for _ in range(4)]
    created = []

    for _ in range(120):
        if created and rng.random() < 0.3:
            b = rng.choice(created)
            owner = next(u for u in users if u.id == b.user_id)
            try:
                booking_service.cancel_booking(db, b.id, owner, now=NOW)
            except ConflictError:
                pass
            continue
        user = rng.choice(users)
        try:
            created.append(booking_service.create_booking(
                db, user.id, rng.choice(["A1", "A2", "A3"]), rng.randint(1, 4),
                start_time=at(rng.randint(0, 30)), now=NOW,
            ))
        except ConflictError:
            pass

    holding = db.execute(select(Booking).where(Booking.status.in_(HOLDING_STATUSES))).scalars().all()
    assert holding
    for i, a in enumerate(holding):
        for b in holding[i + 1:]:
            if a.slot_id == b.slot_id:
                assert not overlaps(a.reserved_at, a.expires_at, b.reserved_at, b.expires_at)


class TestCancelBooking:

    def test_owner_cancels(self, db, alice):
        b = booking_service.create_booking(db, alice.id, "A1", 2, now=NOW)
        out = booking_service.cancel_booking(db, b.id, alice, now=NOW)
        assert out.status == "cancelled"
        assert out.cancelled_at == NOW
        assert get_slot_view(db, "A1", NOW).status == "available"

    def test_unknown_booking(self, db, alice):
        with pytest.raises(NotFoundError):
            booking_service.cancel_booking(db, "nope", alice, now=NOW)

    def test_non_owner_is_forbidden(self, db, alice, bob):
        b = booking_service.create_booking(db, alice.id, "A1", 2, now=NOW)
        with pytest.raises(ForbiddenError):
            booking_service.cancel_booking(db, b.id, bob, now=NOW)
        assert booking_service.get_booking(db, b.id, now=NOW).status == "active"

    def test_admin_may_cancel(self, db, alice, admin):
        b = booking_service.create_booking(db, alice.id, "A1", 2, now=NOW)
        assert booking_service.cancel_booking(db, b.id, admin, now=NOW).status == "cancelled"

    def test_entered_booking_cannot_be_cancelled(self, db, alice):
        b = booking_service.create_booking(db, alice.id, "A1", 2, now=NOW)
        gate_service.verify_entry(db, b.qr_code, now=at(0.5))
        with pytest.raises(ForbiddenError):
            booking_service.cancel_booking(db, b.id, alice, now=at(0.6))
        assert booking_service.get_booking(db, b.id, now=at(0.6)).status == "occupied"

    def test_second_cancel_conflicts(self, db, alice):
        b = booking_service.create_booking(db, alice.id, "A1", 2, now=NOW)
        booking_service.cancel_booking(db, b.id, alice, now=NOW)
        with pytest.raises(ConflictError):
            booking_service.cancel_booking(db, b.id, alice, now=NOW)

    def test_cancel_after_window_conflicts_and_expires(self, db, alice):
        b = booking_service.create_booking(db, alice.id, "A1", 1, now=NOW)
        with pytest.raises(ConflictError):
            booking_service.cancel_booking(db, b.id, alice, now=at(2))
        db.expire_all()
        assert db.get(Booking, b.id).status == "expired"


class TestReadPaths:

    def test_get_unknown(self, db):
        with pytest.raises(NotFoundError):
            booking_service.get_booking(db, "missing", now=NOW)

    def test_get_reports_expired_past_window(self, db, alice):
        b = booking_service.create_booking(db, alice.id, "A1", 1, now=NOW)
        assert booking_service.get_booking(db, b.id, now=at(0.5)).status == "active"
        assert booking_service.get_booking(db, b.id, now=at(1.5)).status == "expired"

    def test_effective_status_without_write(self, db, alice):
        b = booking_service.create_booking(db, alice.id, "A1", 1, now=NOW)
        assert booking_service.effective_status(b, at(1)) == "active"
        assert booking_service.effective_status(b, at(1.01)) == "expired"
        assert b.status == "active"

    def test_list_user_bookings_newest_first(self, db, alice, bob):
        first = booking_service.create_booking(db, alice.id, "A1", 1, start_time=at(1), now=NOW)
        second = booking_service.create_booking(db, alice.id, "A2", 1, start_time=at(5), now=NOW)
        booking_service.create_booking(db, bob.id, "A3", 1, now=NOW)
        items = booking_service.list_user_bookings(db, alice.id, now=NOW)
        assert [b.id for b in items] == [second.id, first.id]

    def test_list_user_bookings_expires_overdue(self, db, alice):
        booking_service.create_booking(db, alice.id, "A1", 1, now=NOW)
        items = booking_service.list_user_bookings(db, alice.id, now=at(3))
        assert [b.status for b in items] == ["expired"]


def test_sweep_committed_mid_cancel_wins(session_factory, db, alice, monkeypatch):
    b = booking_service.create_booking(db, alice.id, "A1", 1, now=NOW)
    real_execute = db.execute
    swept = []

    def execute_then_sweep(statement, *args, **kwargs):
        result = real_execute(statement, *args, **kwargs)
        if not swept and getattr(statement, "is_select", False):
            swept.append(True)
            # Buffer the rows so the open cursor doesn't hold SQLite's read lock.
            result = result.freeze()()
            other = session_factory()
            try:
                booking_service.expire_overdue_bookings(other, at(2))
            finally:
                other.close()
        return result

    monkeypatch.setattr(db, "execute", execute_then_sweep)
    with pytest.raises(ConflictError):
        booking_service.cancel_booking(db, b.id, alice, now=at(0.5))
    monkeypatch.undo()

    db.expire_all()
    stored = db.get(Booking, b.id)
    assert stored.status == "expired"
    assert stored.cancelled_at is None


def test_unknown_status_is_rejected_by_the_database(db, alice):
    b = booking_service.create_booking(db, alice.id, "A1", 1, now=NOW)
    b.status = "parked"
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()
