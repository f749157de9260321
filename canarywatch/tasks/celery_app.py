from celery import Celery
from celery.schedules import crontab

from canarywatch.core.config import get_settings

settings = get_settings()
celery_app = Celery(
    "canarywatch",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["canarywatch.tasks.jobs"],
)
celery_app.conf.task_always_eager = settings.celery_eager_mode
celery_app.conf.task_eager_propagates = True

celery_app.conf.task_routes = {
    "canarywatch.tasks.jobs.drain_pipeline": {"queue": "pipeline"},
    "canarywatch.tasks.jobs.process_queue": {"queue": "pipeline"},
    "canarywatch.tasks.jobs.rebuild_snapshot": {"queue": "default"},
    "canarywatch.tasks.jobs.cleanup_idempotency": {"queue": "default"},
}
celery_app.conf.beat_schedule = {
    "daily-pipeline-drain": {
        "task": "canarywatch.tasks.jobs.drain_pipeline",
        "schedule": crontab(minute=0, hour=settings.pipeline_schedule_cron_hour),
    },
    "cleanup-idempotency-daily": {
        "task": "canarywatch.tasks.jobs.cleanup_idempotency",
        "schedule": crontab(minute=0, hour=2),
    },
}
