"""Read-after-write reconciliation for saga pages.

A reader can observe ``status=completed`` before the pages document is
visible (replica lag, caching layers). Such reads are retried on a short
schedule; if the pages never show up the mismatch is logged loudly and the
last read is returned unchanged.
"""

from __future__ import annotations

import time
from typing import Callable, Iterable

from tenacity import RetryCallState

from ..db_models import SagaRecord, SagaStatus
from ..errors import ConsistencyWarning
from ..logging import logger
from ..utils.retry import retry_until

VERIFY_STATUSES = frozenset({SagaStatus.completed.value})


def pages_missing(record: SagaRecord | None, statuses: Iterable[str] = VERIFY_STATUSES) -> bool:
    return record is not None and record.status in statuses and record.pages is None


def await_pages(
    read: Callable[[], SagaRecord | None],
    saga_id: str,
    delays: Iterable[float],
    *,
    statuses: Iterable[str] = VERIFY_STATUSES,
    sleep: Callable[[float], None] = time.sleep,
) -> SagaRecord | None:
    """Re-read until pages are visible for a record in *statuses*."""
    statuses = frozenset(statuses)

    def _log_lag(retry_state: RetryCallState) -> None:
        warning = ConsistencyWarning(
            f"saga {saga_id} reports pages pending after read {retry_state.attempt_number}"
        )
        logger.warning(
            "saga_pages_not_visible",
            saga_id=saga_id,
            attempt=retry_state.attempt_number,
            warning=warning.message,
        )

    record = retry_until(
        read,
        until=lambda rec: not pages_missing(rec, statuses),
        delays=list(delays),
        sleep=sleep,
        on_retry=_log_lag,
    )
    if pages_missing(record, statuses):
        logger.error(
            "saga_pages_missing_after_retries",
            saga_id=saga_id,
            status=record.status if record else None,
        )
    return record
