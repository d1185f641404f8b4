"""Status reads for pollers.

A saga that already reports images or completion but whose pages document
is not yet visible is re-read on the reconciliation schedule before the
view is returned.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from ..config import PipelineConfig, settings
from ..db_models import SagaRecord
from ..errors import NotFoundError, PayloadDecodeError, ValidationError
from ..logging import logger
from ..models.schemas import Page, decode_pages
from ..persistence.sagas import SagaStore
from ..utils.datetime_utils import ensure_utc
from .consistency import VERIFY_STATUSES, await_pages


@dataclass
class SagaView:
    id: str
    game_id: str
    wallet_id: str
    status: str
    progress_percent: int
    current_step: str | None
    narrative_title: str | None
    total_pages: int | None
    total_panels: int | None
    pages: list[Page] | None
    generation_time_seconds: int | None
    cost_usd: float | None
    created_at: datetime | None
    completed_at: datetime | None
    error_message: str | None = None
    panels: list[dict[str, Any]] | None = field(default=None)


def _decoded_pages(record: SagaRecord) -> list[Page] | None:
    try:
        return decode_pages(record.pages)
    except PayloadDecodeError as exc:
        logger.error("saga_pages_undecodable", saga_id=record.id, error=str(exc))
        return None


def to_view(record: SagaRecord, include_panels: bool = False) -> SagaView:
    return SagaView(
        id=record.id,
        game_id=record.game_id,
        wallet_id=record.wallet_id,
        status=record.status,
        progress_percent=record.progress_percent,
        current_step=record.current_step,
        narrative_title=record.narrative_title,
        total_pages=record.total_pages,
        total_panels=record.total_panels,
        pages=_decoded_pages(record),
        generation_time_seconds=record.generation_time_seconds,
        cost_usd=record.cost_estimate_usd,
        created_at=ensure_utc(record.created_at),
        completed_at=ensure_utc(record.completed_at),
        error_message=record.error_message,
        panels=record.panels if include_panels else None,
    )


def validate_saga_id(saga_id: str) -> str:
    try:
        return str(uuid.UUID(str(saga_id)))
    except ValueError as exc:
        raise ValidationError(f"malformed saga id: {saga_id!r}") from exc


def get_saga_view(
    saga_id: str,
    store: SagaStore,
    *,
    include_panels: bool = False,
    config: PipelineConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> SagaView:
    config = config or settings.pipeline_config
    saga_id = validate_saga_id(saga_id)
    record = await_pages(
        lambda: store.get(saga_id),
        saga_id,
        config.reconcile_delays_seconds,
        statuses=VERIFY_STATUSES,
        sleep=sleep,
    )
    if record is None:
        raise NotFoundError(f"saga {saga_id} not found")
    return to_view(record, include_panels=include_panels)
