"""
Celery Worker Configuration

Configures Celery for the site audit pipeline:
- Crawl batches and continuations
- Check-phase resumes
- Stale audit sweep and retention cleanup (beat)
"""

import logging

from celery import Celery
from celery.schedules import crontab

from selo.config import settings

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# Create Celery app
celery_app = Celery(
    "selo",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "selo.tasks.audit_tasks",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=600,  # a batch is capped well below this
    task_soft_time_limit=540,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
    worker_max_tasks_per_child=100,

    # Result backend settings
    result_expires=86400,  # 24 hours

    # Queue routing
    task_routes={
        "selo.tasks.audit_tasks.*": {"queue": "audit"},
    },

    # Default queue
    task_default_queue="default",
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Fail audits whose worker died, every 5 minutes
    "check-stale-audits": {
        "task": "selo.tasks.audit_tasks.check_stale_audits",
        "schedule": crontab(minute="*/5"),
    },

    # Retention cleanup weekly, Sunday 3 AM
    "cleanup-audits": {
        "task": "selo.tasks.audit_tasks.cleanup_audits",
        "schedule": crontab(day_of_week=0, hour=3, minute=0),
    },
}


class SeloTask(celery_app.Task):
    """Base task class that logs failures and records them in the result backend."""

    abstract = True

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"Task {self.name}[{task_id}] failed: {exc}")
        self.update_state(
            state="FAILURE",
            meta={
                "exc_type": type(exc).__name__,
                "exc_message": str(exc),
            },
        )


celery_app.Task = SeloTask
