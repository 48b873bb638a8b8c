from sqlalchemy import text

from conftest import NOW, at
from app.models.booking import Booking
from app.services import booking_service
from app.services.gate_service import verify_entry
from app.tasks import worker_jobs
from app.tasks.celery_app import celery


def test_sweep_expires_only_unentered_overdue_bookings(db, alice, bob):
    stale = booking_service.create_booking(db, alice.id, "A1", 1, now=NOW)
    parked = booking_service.create_booking(db, bob.id, "A2", 1, now=NOW)
    later = booking_service.create_booking(db, alice.id, "A3", 1, start_time=at(5), now=NOW)
    verify_entry(db, parked.qr_code, now=at(0.5))

    assert worker_jobs.expire_overdue_bookings(db, now=at(2)) == {"expired": 1}

    db.expire_all()
    assert db.get(Booking, stale.id).status == "expired"
    assert db.get(Booking, parked.id).status == "occupied"
    assert db.get(Booking, later.id).status == "active"


def test_sweep_is_idempotent(db, alice):
    booking_service.create_booking(db, alice.id, "A1", 1, now=NOW)
    assert worker_jobs.expire_overdue_bookings(db, now=at(2)) == {"expired": 1}
    assert worker_jobs.expire_overdue_bookings(db, now=at(3)) == {"expired": 0}


def test_sweep_skips_when_tables_are_missing(db):
    db.execute(text("DROP TABLE bookings"))
    db.commit()
    assert worker_jobs.expire_overdue_bookings(db, now=NOW)["skipped"] is True


def test_beat_schedules_the_sweep():
    entry = celery.conf.beat_schedule["expire-overdue-bookings-every-minute"]
    assert entry["task"] == "app.tasks.jobs.expire_overdue_bookings"
