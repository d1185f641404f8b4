"""Celery app configuration for the saga worker."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from celery import Celery, signals

from .config import settings
from .logging import logger

QUEUE_NAME = settings.queue_config.name
GENERATE_TASK = "generate_saga"
SWEEP_TASK = "sweep_stalled_jobs"
PURGE_TASK = "purge_saga_queue"

_route = {"queue": QUEUE_NAME, "routing_key": QUEUE_NAME}
_lease = settings.queue_config.lease_seconds

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    "task_track_started": True,
    "worker_concurrency": settings.queue_config.concurrency,
    "worker_prefetch_multiplier": 1,
    # Redelivery is owned by the saga_jobs stall sweep, not by broker acks
    "task_acks_late": False,
    # Leases are renewed on every progress write, so a run may outlive one lease
    "task_soft_time_limit": _lease * 3,
    "task_time_limit": _lease * 3 + 60,
    "task_default_queue": QUEUE_NAME,
    "task_routes": {
        GENERATE_TASK: _route,
        SWEEP_TASK: _route,
        PURGE_TASK: _route,
    },
}

app = Celery(
    "saga-pipeline",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["saga_worker.jobs.tasks"],
)
app.conf.update(**celery_config)
app.conf.beat_schedule = {
    "sweep-stalled-saga-jobs": {
        "task": SWEEP_TASK,
        "schedule": timedelta(seconds=settings.queue_config.stalled_interval_seconds),
        "options": _route,
    },
}


class CeleryDispatcher:
    """Delivers saga jobs as Celery task messages."""

    def __init__(self, celery: Celery | None = None) -> None:
        self.celery = celery or app

    def dispatch(self, job_id: str, payload: dict[str, Any], countdown: float | None = None) -> str | None:
        result = self.celery.send_task(
            GENERATE_TASK,
            args=[job_id, payload],
            countdown=countdown,
            **_route,
        )
        return result.id

    def revoke(self, task_id: str) -> None:
        # Never terminate: only messages that have not started are purged
        self.celery.control.revoke(task_id)


def build_job_queue():
    from .services.job_queue import JobQueue

    return JobQueue(dispatcher=CeleryDispatcher(app))


def sweep_on_startup() -> None:
    """Reap leases left behind by a worker that died mid-job."""
    from .persistence.sagas import SagaStore
    from .services.worker import SagaWorker

    try:
        outcomes = SagaWorker(SagaStore(), build_job_queue()).sweep()
        logger.info("startup_stall_sweep_complete", stalled=len(outcomes))
    except Exception as exc:
        logger.exception("startup_stall_sweep_failed", error=str(exc))


@signals.worker_ready.connect
def on_worker_ready(sender=None, **kwargs):
    """Called when the Celery worker is ready. Reap stalled leases once."""
    worker_name = getattr(sender, "hostname", None) or (str(sender) if sender else "unknown")
    logger.info("celery_worker_ready", worker=worker_name)
    sweep_on_startup()
