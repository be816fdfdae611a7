"""
Celery application: broker and result backend from settings.
Tasks are in app.workers.tasks (housekeeping only; request handling never waits on a worker).
"""
from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "app",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "app.workers.tasks.purge_sessions",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=300,
    result_expires=86400,
    beat_schedule={
        "purge-identification-sessions": {
            "task": "app.workers.tasks.purge_sessions.purge_identification_sessions",
            "schedule": crontab(minute="*/30"),
        },
    },
)
