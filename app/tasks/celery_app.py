from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging
from app.core.config import settings
from app.core.logging import configure_logging

celery_app = Celery("miniapp_builder", broker=settings.redis_url, backend=settings.redis_url, include=["app.tasks.jobs"])
celery_app.conf.update(
    task_track_started=True,
    result_expires=3600,
    broker_connection_retry_on_startup=True,
    beat_schedule={
        "reap-expired-jobs": {"task": "reap_expired_jobs", "schedule": crontab(minute=0)},
    },
)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging()
