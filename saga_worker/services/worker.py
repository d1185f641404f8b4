"""Saga worker service.

``SagaWorker`` owns the provider clients and the pipeline for the lifetime
of a worker process. It is constructed and started explicitly by whoever
hosts it (the Celery worker, the CLI, tests):

    with SagaWorker(store, queue) as worker:
        worker.handle(job_id, payload)

``handle`` is transport-agnostic. It returns a ``HandleResult`` and leaves
re-delivery of deferred or retried jobs to the caller.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from structlog.contextvars import bound_contextvars

from ..clients.gameplay import GameplayClient
from ..clients.images import ImageClient
from ..config import PipelineConfig, settings
from ..errors import NotFoundError, PayloadDecodeError, SagaError, is_retryable
from ..logging import logger
from ..models.schemas import decode_job_payload
from ..persistence.sagas import SagaStore
from ..utils.datetime_utils import window_start
from .illustration import PageRenderer
from .job_queue import PURGED_ERROR, STALLED_ERROR, JobQueue, LeaseOutcome, StallOutcome
from .pipeline import GameplaySource, SagaPipeline, SagaRun
from .progress import ProgressReporter


class HandleOutcome(str, Enum):
    completed = "completed"
    failed = "failed"
    retry_scheduled = "retry_scheduled"
    deferred = "deferred"
    skipped = "skipped"


@dataclass(frozen=True)
class HandleResult:
    job_id: str
    outcome: HandleOutcome
    retry_in: float | None = None
    error: str | None = None


class SagaWorker:
    def __init__(
        self,
        store: SagaStore,
        queue: JobQueue,
        *,
        gameplay: GameplaySource | None = None,
        renderer: PageRenderer | None = None,
        config: PipelineConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.queue = queue
        self.config = config or settings.pipeline_config
        self._gameplay = gameplay
        self._renderer = renderer
        self._owned: list[Any] = []
        self._sleep = sleep
        self.pipeline: SagaPipeline | None = None

    @property
    def running(self) -> bool:
        return self.pipeline is not None

    def start(self) -> SagaWorker:
        if self.running:
            return self
        if self._gameplay is None:
            self._gameplay = GameplayClient()
            self._owned.append(self._gameplay)
        if self._renderer is None:
            self._renderer = ImageClient(sleep=self._sleep)
            self._owned.append(self._renderer)
        self.pipeline = SagaPipeline(
            self.store,
            self._gameplay,
            self._renderer,
            config=self.config,
            sleep=self._sleep,
        )
        logger.info("saga_worker_started", queue=self.queue.config.name)
        return self

    def stop(self) -> None:
        if not self.running:
            return
        for client in self._owned:
            client.close()
        if self._gameplay in self._owned:
            self._gameplay = None
        if self._renderer in self._owned:
            self._renderer = None
        self._owned.clear()
        self.pipeline = None
        logger.info("saga_worker_stopped")

    def __enter__(self) -> SagaWorker:
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    # -------------------------------------------------------------------------
    # Job handling
    # -------------------------------------------------------------------------
    def handle(self, job_id: str, payload: Any) -> HandleResult:
        """Run one delivered job to an outcome."""
        if not self.running:
            raise RuntimeError("SagaWorker.handle called before start()")
        with bound_contextvars(job_id=job_id):
            return self._handle(job_id, payload)

    def _handle(self, job_id: str, payload: Any) -> HandleResult:
        try:
            decoded = decode_job_payload(payload)
            if str(decoded.job_id) != job_id:
                raise PayloadDecodeError(f"payload job_id {decoded.job_id} does not match delivery {job_id}")
        except PayloadDecodeError as exc:
            self.queue.discard(job_id, exc.message)
            self._fail_saga(job_id, exc.message)
            return HandleResult(job_id, HandleOutcome.failed, error=exc.message)

        leased = self.queue.lease(job_id)
        if leased.outcome in (LeaseOutcome.missing, LeaseOutcome.finished):
            logger.info("job_skipped", reason=leased.outcome.value)
            return HandleResult(job_id, HandleOutcome.skipped)
        if leased.outcome is not LeaseOutcome.granted:
            logger.info("job_deferred", reason=leased.outcome.value, retry_in=leased.retry_in)
            return HandleResult(job_id, HandleOutcome.deferred, retry_in=leased.retry_in)

        lease = leased.lease
        try:
            record = self.store.get(job_id)
        except SagaError as exc:
            # the lease is held; release it through the retry path
            return self._on_failure(job_id, exc)
        if record is None:
            error = NotFoundError(f"saga {job_id} not found", stage="preflight")
            self.queue.fail_attempt(job_id, error.message, retryable=False)
            logger.warning("saga_record_missing")
            return HandleResult(job_id, HandleOutcome.failed, error=error.message)
        if record.is_terminal:
            self.queue.ack(job_id)
            logger.info("job_skipped", reason="saga_terminal", status=record.status)
            return HandleResult(job_id, HandleOutcome.skipped)

        reporter = ProgressReporter(
            job_id,
            self.store,
            self.queue,
            images_start=self.config.images_progress_start,
            images_end=self.config.images_progress_end,
        )
        run = SagaRun(
            saga_id=job_id,
            game_id=decoded.game_id,
            wallet_id=decoded.wallet_id,
            enqueued_at=lease.enqueued_at,
        )
        logger.info("saga_generation_started", attempt=lease.attempt, game_id=decoded.game_id)
        try:
            self.pipeline.run(run, reporter)
        except Exception as exc:
            return self._on_failure(job_id, exc)
        self.queue.ack(job_id)
        return HandleResult(job_id, HandleOutcome.completed)

    def _on_failure(self, job_id: str, exc: Exception) -> HandleResult:
        if isinstance(exc, SagaError):
            message = exc.message
            logger.warning("saga_attempt_failed", stage=exc.stage, error=message, retryable=exc.retryable)
        else:
            message = f"{type(exc).__name__}: {exc}"
            logger.exception("saga_attempt_crashed", error=message)

        decision = self.queue.fail_attempt(job_id, message, retryable=is_retryable(exc))
        if not decision.final:
            return HandleResult(job_id, HandleOutcome.retry_scheduled, retry_in=decision.retry_in, error=message)
        self._fail_saga(job_id, message)
        return HandleResult(job_id, HandleOutcome.failed, error=message)

    def _fail_saga(self, job_id: str, message: str) -> None:
        try:
            self.store.mark_failed(job_id, message)
        except SagaError as exc:
            logger.error("saga_fail_write_failed", saga_id=job_id, error=exc.message)

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------
    def sweep(self) -> list[StallOutcome]:
        """Reap stalled leases; sagas whose job gave up or was purged are failed."""
        outcomes = self.queue.reap_stalled()
        for outcome in outcomes:
            if outcome.failed:
                self._fail_saga(outcome.job_id, STALLED_ERROR)
        self.fail_orphans()
        return outcomes

    def fail_orphans(self) -> list[str]:
        """Fail in-progress sagas whose queue entry no longer exists."""
        cutoff = window_start(self.queue.config.orphan_grace_seconds)
        orphans = self.store.find_orphaned(cutoff)
        for saga_id in orphans:
            logger.warning("saga_orphaned", saga_id=saga_id)
            self._fail_saga(saga_id, PURGED_ERROR)
        return orphans

    def drain(self, max_jobs: int | None = None) -> list[HandleResult]:
        """Process runnable jobs in-process, oldest first, until none remain."""
        results: list[HandleResult] = []
        while max_jobs is None or len(results) < max_jobs:
            self.sweep()
            runnable = self.queue.runnable_ids()
            if not runnable:
                wait = self.queue.next_due_in()
                if wait is None:
                    break
                self._sleep(wait)
                continue
            job = self.queue.get(runnable[0])
            if job is None:
                continue
            result = self.handle(job.id, job.payload)
            results.append(result)
            if result.outcome is HandleOutcome.deferred:
                self._sleep(result.retry_in or 1.0)
        return results
