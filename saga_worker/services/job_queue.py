"""Durable job queue for saga generation.

Queue entries live in the ``saga_jobs`` table, which is the source of truth
for leases, attempts and stalls. Celery only carries delivery: new and
requeued entries are dispatched from here, delayed retries are re-sent by the
task that ran them, and messages for purged entries are revoked.

Semantics:
- one active lease at a time (single-flight) and at most ``rate_limit_max``
  lease grants per ``rate_limit_window_seconds``;
- a lease lasts ``lease_seconds`` and is renewed by every progress write;
- a retryable failure is re-delivered after exponential backoff until
  ``max_attempts`` is reached, stalls do not count against that budget;
- a lease that expires is a stall. Stalls below ``max_stalled_count`` are
  requeued from scratch; reaching it fails the entry permanently.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Iterator, Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..config import QueueConfig, settings
from ..db import get_session_factory, session_scope
from ..db_models import JobState, SagaJob, SagaJobStart
from ..errors import ProviderError
from ..logging import logger
from ..models.schemas import SagaJobPayload
from ..utils.datetime_utils import ensure_utc, now_utc
from ..utils.retry import BackoffSchedule, retry_until

STALLED_ERROR = "job stalled more than allowable limit"
PURGED_ERROR = "job removed from the queue before it ran"


class Dispatcher(Protocol):
    """Delivery transport for queue entries."""

    def dispatch(self, job_id: str, payload: dict[str, Any], countdown: float | None = None) -> str | None:
        ...

    def revoke(self, task_id: str) -> None:
        ...


class NullDispatcher:
    """Delivers nothing; used when jobs are drained in-process."""

    def dispatch(self, job_id: str, payload: dict[str, Any], countdown: float | None = None) -> str | None:
        return None

    def revoke(self, task_id: str) -> None:
        return None


class LeaseOutcome(str, Enum):
    granted = "granted"
    missing = "missing"
    finished = "finished"
    busy = "busy"
    throttled = "throttled"
    not_ready = "not_ready"


@dataclass(frozen=True)
class Lease:
    job_id: str
    attempt: int
    payload: dict[str, Any]
    enqueued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class LeaseResult:
    outcome: LeaseOutcome
    lease: Lease | None = None
    retry_in: float | None = None


@dataclass(frozen=True)
class FailureDecision:
    final: bool
    attempts: int
    retry_in: float | None = None


@dataclass(frozen=True)
class StallOutcome:
    job_id: str
    stall_count: int
    failed: bool


class JobQueue:
    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        config: QueueConfig | None = None,
        dispatcher: Dispatcher | None = None,
        clock: Callable[[], datetime] = now_utc,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._factory = session_factory
        self.config = config or settings.queue_config
        self.dispatcher: Dispatcher = dispatcher or NullDispatcher()
        self.backoff = BackoffSchedule(base_seconds=self.config.backoff_base_seconds)
        self._clock = clock
        self._sleep = sleep

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self._factory is None:
            self._factory = get_session_factory()
        return self._factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with session_scope(self.session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            raise ProviderError(f"job queue unavailable: {exc}", stage="queue") from exc

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------
    def _dispatch(self, job_id: str, payload: dict[str, Any], countdown: float | None = None) -> str | None:
        """Hand the entry to the transport; failures are logged and left to the sweeper."""
        try:
            return retry_until(
                lambda: self.dispatcher.dispatch(job_id, payload, countdown),
                until=lambda _task_id: True,
                delays=self.config.transport_retry_delays,
                retry_on=(Exception,),
                sleep=self._sleep,
            )
        except Exception as exc:
            logger.error("job_dispatch_failed", job_id=job_id, error=str(exc))
            return None

    def _revoke(self, task_id: str, job_id: str) -> None:
        try:
            retry_until(
                lambda: self.dispatcher.revoke(task_id),
                until=lambda _result: True,
                delays=self.config.transport_retry_delays,
                retry_on=(Exception,),
                sleep=self._sleep,
            )
        except Exception as exc:
            logger.warning("job_revoke_failed", job_id=job_id, celery_task_id=task_id, error=str(exc))

    def _record_task_id(self, job_id: str, task_id: str | None) -> None:
        if not task_id:
            return
        with self._session() as session:
            job = session.get(SagaJob, job_id)
            if job is not None:
                job.celery_task_id = task_id

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------
    def enqueue(self, payload: SagaJobPayload) -> SagaJob:
        """Persist a waiting entry and dispatch it."""
        job_id = str(payload.job_id)
        body = payload.model_dump(mode="json")
        with self._session() as session:
            job = SagaJob(
                id=job_id,
                game_id=payload.game_id,
                wallet_id=payload.wallet_id,
                payload=body,
                state=JobState.waiting.value,
                enqueued_at=self._now(),
            )
            session.add(job)
            session.flush()
        logger.info("job_enqueued", job_id=job_id, game_id=payload.game_id)
        task_id = self._dispatch(job_id, body)
        self._record_task_id(job_id, task_id)
        job.celery_task_id = task_id
        return job

    def purge_inactive(self, states: list[str] | None = None) -> list[str]:
        """Remove every entry in *states* (default: all but active) and revoke its delivery."""
        states = states or list(self.config.purge_states)
        if JobState.active.value in states:
            raise ValueError("active jobs cannot be purged")
        with self._session() as session:
            jobs = session.execute(select(SagaJob).where(SagaJob.state.in_(states))).scalars().all()
            purged = [(job.id, job.celery_task_id) for job in jobs]
            if purged:
                session.execute(
                    delete(SagaJob)
                    .where(SagaJob.id.in_([job_id for job_id, _ in purged]))
                    .execution_options(synchronize_session=False)
                )
        for job_id, task_id in purged:
            if task_id:
                self._revoke(task_id, job_id)
        if purged:
            logger.info("job_queue_purged", purged=len(purged), states=states)
        return [job_id for job_id, _ in purged]

    # -------------------------------------------------------------------------
    # Consumer side
    # -------------------------------------------------------------------------
    def lease(self, job_id: str) -> LeaseResult:
        """Try to take the lease on *job_id*."""
        now = self._now()
        with self._session() as session:
            job = session.get(SagaJob, job_id, with_for_update=True)
            if job is None:
                return LeaseResult(LeaseOutcome.missing)
            if job.is_finished:
                return LeaseResult(LeaseOutcome.finished)
            if job.state == JobState.delayed.value and job.available_at is not None:
                wait = (ensure_utc(job.available_at) - now).total_seconds()
                if wait > 0:
                    return LeaseResult(LeaseOutcome.not_ready, retry_in=wait)

            holder = session.execute(
                select(SagaJob)
                .where(SagaJob.state == JobState.active.value, SagaJob.lease_expires_at > now)
                .limit(1)
            ).scalars().first()
            if holder is not None:
                retry_in = (ensure_utc(holder.lease_expires_at) - now).total_seconds()
                return LeaseResult(
                    LeaseOutcome.busy,
                    retry_in=min(max(retry_in, 1.0), float(self.config.stalled_interval_seconds)),
                )

            window_start = now - timedelta(seconds=self.config.rate_limit_window_seconds)
            session.execute(
                delete(SagaJobStart)
                .where(SagaJobStart.started_at < window_start)
                .execution_options(synchronize_session=False)
            )
            recent = session.execute(
                select(func.count()).select_from(SagaJobStart).where(SagaJobStart.started_at >= window_start)
            ).scalar_one()
            if recent >= self.config.rate_limit_max:
                return LeaseResult(
                    LeaseOutcome.throttled, retry_in=float(self.config.rate_limit_window_seconds)
                )

            expires_at = now + timedelta(seconds=self.config.lease_seconds)
            job.state = JobState.active.value
            job.attempts += 1
            job.started_at = now
            job.available_at = None
            job.lease_expires_at = expires_at
            session.add(SagaJobStart(job_id=job.id, started_at=now))
            session.flush()
            lease = Lease(
                job_id=job.id,
                attempt=job.attempts,
                payload=dict(job.payload),
                enqueued_at=ensure_utc(job.enqueued_at),
                expires_at=expires_at,
            )
        logger.info("job_leased", job_id=job_id, attempt=lease.attempt)
        return LeaseResult(LeaseOutcome.granted, lease=lease)

    def renew(self, job_id: str) -> bool:
        """Extend an active lease (heartbeat)."""
        now = self._now()
        with self._session() as session:
            job = session.get(SagaJob, job_id)
            if job is None or job.state != JobState.active.value:
                return False
            job.lease_expires_at = now + timedelta(seconds=self.config.lease_seconds)
            return True

    def ack(self, job_id: str) -> None:
        with self._session() as session:
            job = session.get(SagaJob, job_id)
            if job is None:
                return
            job.state = JobState.completed.value
            job.finished_at = self._now()
            job.lease_expires_at = None
        logger.info("job_completed", job_id=job_id)

    def discard(self, job_id: str, reason: str) -> None:
        """Fail an entry without retrying (bad payload, missing saga)."""
        with self._session() as session:
            job = session.get(SagaJob, job_id)
            if job is None:
                return
            job.state = JobState.failed.value
            job.finished_at = self._now()
            job.lease_expires_at = None
            job.last_error = reason[:2000]
        logger.warning("job_discarded", job_id=job_id, reason=reason[:500])

    def fail_attempt(self, job_id: str, error: str, retryable: bool) -> FailureDecision:
        """Record a failed attempt and decide between a delayed retry and final failure."""
        now = self._now()
        with self._session() as session:
            job = session.get(SagaJob, job_id)
            if job is None:
                return FailureDecision(final=True, attempts=0)
            counted = max(job.attempts - job.stall_count, 1)
            job.last_error = error[:2000]
            job.lease_expires_at = None
            if retryable and counted < self.config.max_attempts:
                delay = self.backoff.delay_for(counted)
                job.state = JobState.delayed.value
                job.available_at = now + timedelta(seconds=delay)
                decision = FailureDecision(final=False, attempts=counted, retry_in=delay)
            else:
                job.state = JobState.failed.value
                job.finished_at = now
                decision = FailureDecision(final=True, attempts=counted)

        if decision.final:
            logger.warning("job_failed", job_id=job_id, attempts=decision.attempts, error=error[:500])
        else:
            logger.info("job_retry_scheduled", job_id=job_id, attempt=decision.attempts, delay_seconds=decision.retry_in)
        return decision

    def reap_stalled(self) -> list[StallOutcome]:
        """Requeue or fail active entries whose lease has expired."""
        now = self._now()
        outcomes: list[StallOutcome] = []
        redeliver: list[tuple[str, dict[str, Any]]] = []
        with self._session() as session:
            stalled = session.execute(
                select(SagaJob)
                .where(SagaJob.state == JobState.active.value, SagaJob.lease_expires_at <= now)
                .order_by(SagaJob.enqueued_at)
                .with_for_update(skip_locked=True)
            ).scalars().all()
            for job in stalled:
                job.stall_count += 1
                job.lease_expires_at = None
                if job.stall_count >= self.config.max_stalled_count:
                    job.state = JobState.failed.value
                    job.finished_at = now
                    job.last_error = STALLED_ERROR
                    outcomes.append(StallOutcome(job.id, job.stall_count, failed=True))
                else:
                    job.state = JobState.waiting.value
                    # the old delivery died with the worker
                    job.celery_task_id = None
                    redeliver.append((job.id, dict(job.payload)))
                    outcomes.append(StallOutcome(job.id, job.stall_count, failed=False))

            # Entries whose delivery was never handed to the transport
            orphans = session.execute(
                select(SagaJob).where(
                    SagaJob.state == JobState.waiting.value,
                    SagaJob.celery_task_id.is_(None),
                )
            ).scalars().all()
            known = {job_id for job_id, _ in redeliver}
            redeliver.extend((job.id, dict(job.payload)) for job in orphans if job.id not in known)

        for outcome in outcomes:
            if outcome.failed:
                logger.error("job_stalled_failed", job_id=outcome.job_id, stall_count=outcome.stall_count)
            else:
                logger.warning("job_stalled_requeued", job_id=outcome.job_id, stall_count=outcome.stall_count)
        for job_id, payload in redeliver:
            self._record_task_id(job_id, self._dispatch(job_id, payload))
        return outcomes

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------
    def get(self, job_id: str) -> SagaJob | None:
        with self._session() as session:
            return session.get(SagaJob, job_id)

    def runnable_ids(self) -> list[str]:
        """Waiting entries and due delayed entries, oldest first."""
        now = self._now()
        with self._session() as session:
            jobs = session.execute(
                select(SagaJob)
                .where(SagaJob.state.in_([JobState.waiting.value, JobState.delayed.value]))
                .order_by(SagaJob.enqueued_at, SagaJob.id)
            ).scalars().all()
            return [
                job.id
                for job in jobs
                if job.available_at is None or ensure_utc(job.available_at) <= now
            ]

    def counts(self) -> dict[str, int]:
        with self._session() as session:
            rows = session.execute(
                select(SagaJob.state, func.count()).group_by(SagaJob.state)
            ).all()
        counts = {state.value: 0 for state in JobState}
        counts.update({state: int(count) for state, count in rows})
        return counts

    def next_due_in(self) -> float | None:
        """Seconds until the earliest delayed entry becomes runnable, if any."""
        now = self._now()
        with self._session() as session:
            due = session.execute(
                select(func.min(SagaJob.available_at)).where(SagaJob.state == JobState.delayed.value)
            ).scalar_one_or_none()
        if due is None:
            return None
        return max((ensure_utc(due) - now).total_seconds(), 0.0)
