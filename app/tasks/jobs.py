from app.tasks.celery_app import celery
from app.tasks import worker_jobs

@celery.task(name="app.tasks.jobs.expire_overdue_bookings")
def expire_overdue_bookings():
    return worker_jobs.expire_overdue_bookings()
