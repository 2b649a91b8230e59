"""
Celery Application Configuration
"""
from celery import Celery
from trustcircle.config import settings

# Create Celery app
celery_app = Celery(
    "trustcircle_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "trustcircle.worker.tasks"
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=120,
    task_soft_time_limit=100,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,  # Results expire after 1 hour
)

# Task routing
celery_app.conf.task_routes = {
    "trustcircle.worker.tasks.dispatch_due_checkins": {"queue": "checkins"},
    "trustcircle.worker.tasks.expire_stale_checkins": {"queue": "checkins"},
    "trustcircle.worker.tasks.*": {"queue": "default"},
}

# Every broker list a task can wait in
WORKER_QUEUES = sorted(
    {route["queue"] for route in celery_app.conf.task_routes.values()}
    | {celery_app.conf.task_default_queue}
)

# Sweeps are safe to overlap; every run only moves rows guarded by status
celery_app.conf.beat_schedule = {
    "dispatch-due-checkins": {
        "task": "trustcircle.worker.tasks.dispatch_due_checkins",
        "schedule": 60.0,
    },
    "expire-stale-checkins": {
        "task": "trustcircle.worker.tasks.expire_stale_checkins",
        "schedule": 60.0,
    },
}

if __name__ == "__main__":
    celery_app.start()
