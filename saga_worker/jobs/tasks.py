"""Celery tasks for saga generation.

Tasks are thin adapters over ``SagaWorker``: they translate its outcomes into
Celery retries and report a summary dict.
"""

from __future__ import annotations

from celery import Task, shared_task

from ..celery_app import GENERATE_TASK, PURGE_TASK, SWEEP_TASK, build_job_queue
from ..config import settings
from ..errors import ProviderError
from ..logging import logger
from ..persistence.sagas import SagaStore
from ..services.worker import HandleOutcome, SagaWorker


class SagaTask(Task):
    """Task base that keeps one started ``SagaWorker`` per worker process."""

    abstract = True
    _saga_worker: SagaWorker | None = None

    @property
    def saga_worker(self) -> SagaWorker:
        if self._saga_worker is None:
            self._saga_worker = SagaWorker(SagaStore(), build_job_queue()).start()
        return self._saga_worker


@shared_task(
    bind=True,
    base=SagaTask,
    name=GENERATE_TASK,
    rate_limit=settings.queue_config.rate_limit,
    max_retries=None,
)
def generate_saga(self, job_id: str, payload: dict) -> dict:
    """Run one saga job delivered by the queue."""
    worker = self.saga_worker
    try:
        result = worker.handle(job_id, payload)
    except ProviderError as exc:
        # The queue table itself was unreachable; nothing was recorded
        countdown = min(
            worker.queue.backoff.delay_for(self.request.retries + 1),
            settings.queue_config.lease_seconds,
        )
        logger.warning("generate_saga_queue_unavailable", job_id=job_id, error=exc.message, countdown=countdown)
        raise self.retry(exc=exc, countdown=countdown)

    if result.outcome in (HandleOutcome.retry_scheduled, HandleOutcome.deferred):
        raise self.retry(countdown=result.retry_in or 1.0)

    return {"job_id": job_id, "outcome": result.outcome.value, "error": result.error}


@shared_task(bind=True, base=SagaTask, name=SWEEP_TASK)
def sweep_stalled_jobs(self) -> dict:
    """Requeue or fail jobs whose lease expired."""
    outcomes = self.saga_worker.sweep()
    failed = sum(1 for outcome in outcomes if outcome.failed)
    if outcomes:
        logger.info("stall_sweep_complete", requeued=len(outcomes) - failed, failed=failed)
    return {"requeued": len(outcomes) - failed, "failed": failed}


@shared_task(name=PURGE_TASK)
def purge_saga_queue() -> dict:
    """Drop every non-active queue entry and revoke its message."""
    purged = build_job_queue().purge_inactive()
    return {"purged": len(purged)}
