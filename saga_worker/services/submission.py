"""Saga submission with a short dedup window per game."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from pydantic import ValidationError as SchemaValidationError

from ..config import PipelineConfig, settings
from ..errors import ValidationError
from ..logging import logger
from ..models.schemas import SagaJobPayload
from ..persistence.sagas import SagaStore
from ..utils.datetime_utils import now_utc, window_start
from .job_queue import JobQueue


@dataclass(frozen=True)
class SubmissionResult:
    job_id: str
    status: str
    deduplicated: bool


def submit_saga(
    game_id: str,
    wallet_id: str,
    *,
    store: SagaStore,
    queue: JobQueue,
    config: PipelineConfig | None = None,
) -> SubmissionResult:
    """Create and enqueue a saga, or return the one already running for this game.

    A non-terminal saga for the same game created within the dedup window is
    returned as-is and nothing is enqueued, unless its queue entry has already
    been purged. Otherwise every non-active queue entry is purged before the
    new job goes in.
    """
    config = config or settings.pipeline_config
    job_id = str(uuid.uuid4())
    try:
        payload = SagaJobPayload(
            job_id=job_id,
            game_id=game_id,
            wallet_id=wallet_id,
            enqueued_at=now_utc(),
        )
    except SchemaValidationError as exc:
        raise ValidationError(f"invalid saga request: {exc.errors()[0]['msg']}") from exc

    existing = store.find_recent_active(payload.game_id, window_start(config.dedup_window_seconds))
    if existing is not None and queue.get(existing.id) is None:
        # purged by a later submission; it will never run
        logger.info("saga_dedup_skipped_orphan", saga_id=existing.id, game_id=payload.game_id)
        existing = None
    if existing is not None:
        logger.info("saga_deduplicated", saga_id=existing.id, game_id=payload.game_id)
        return SubmissionResult(job_id=existing.id, status=existing.status, deduplicated=True)

    queue.purge_inactive()
    record = store.create(job_id, payload.game_id, payload.wallet_id)
    queue.enqueue(payload)
    logger.info("saga_submitted", saga_id=job_id, game_id=payload.game_id)
    return SubmissionResult(job_id=job_id, status=record.status, deduplicated=False)
