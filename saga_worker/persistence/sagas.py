"""Persistence for saga records.

The worker is the only writer of a saga after submission creates it.
Progress updates are guarded in SQL so a stale or replayed write can never
move a saga backwards or touch one that already finished.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

from sqlalchemy import exists, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..db import get_session_factory, session_scope
from ..db_models import SagaJob, SagaRecord, SagaStatus
from ..errors import ProviderError
from ..logging import logger
from ..utils.datetime_utils import now_utc

_IN_PROGRESS = [status.value for status in SagaStatus.in_progress()]


class SagaStore:
    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._factory = session_factory

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
            raise ProviderError(f"saga store unavailable: {exc}", stage="store") from exc

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------
    def get(self, saga_id: str) -> SagaRecord | None:
        with self._session() as session:
            return session.get(SagaRecord, saga_id)

    def find_recent_active(self, game_id: str, since: datetime) -> SagaRecord | None:
        """Newest non-terminal saga for *game_id* created at or after *since*."""
        with self._session() as session:
            stmt = (
                select(SagaRecord)
                .where(
                    SagaRecord.game_id == game_id,
                    SagaRecord.status.in_(_IN_PROGRESS),
                    SagaRecord.created_at >= since,
                )
                .order_by(SagaRecord.created_at.desc())
                .limit(1)
            )
            return session.execute(stmt).scalars().first()

    def find_orphaned(self, created_before: datetime) -> list[str]:
        """Non-terminal sagas created before *created_before* that have no queue entry."""
        with self._session() as session:
            stmt = (
                select(SagaRecord.id)
                .where(
                    SagaRecord.status.in_(_IN_PROGRESS),
                    SagaRecord.created_at < created_before,
                    ~exists().where(SagaJob.id == SagaRecord.id),
                )
                .order_by(SagaRecord.created_at)
            )
            return list(session.execute(stmt).scalars().all())

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------
    def create(self, saga_id: str, game_id: str, wallet_id: str) -> SagaRecord:
        with self._session() as session:
            record = SagaRecord(
                id=saga_id,
                game_id=game_id,
                wallet_id=wallet_id,
                status=SagaStatus.pending.value,
                progress_percent=0,
                current_step="queued",
            )
            session.add(record)
            session.flush()
            logger.info("saga_created", saga_id=saga_id, game_id=game_id)
            return record

    def update_progress(self, saga_id: str, step: str, percent: int, status: SagaStatus) -> bool:
        """Advance progress; returns False when the write was stale or the saga is finished."""
        percent = max(0, min(100, int(percent)))
        with self._session() as session:
            result = session.execute(
                update(SagaRecord)
                .where(
                    SagaRecord.id == saga_id,
                    SagaRecord.status.in_(_IN_PROGRESS),
                    SagaRecord.progress_percent <= percent,
                )
                .values(
                    progress_percent=percent,
                    current_step=step,
                    status=status.value,
                    updated_at=now_utc(),
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def mark_completed(
        self,
        saga_id: str,
        *,
        pages: dict[str, Any],
        panels: list[dict[str, Any]],
        narrative_title: str,
        total_pages: int,
        total_panels: int,
        generation_time_seconds: int,
        cost_estimate_usd: float,
        progress_percent: int = 99,
    ) -> bool:
        with self._session() as session:
            now = now_utc()
            result = session.execute(
                update(SagaRecord)
                .where(SagaRecord.id == saga_id, SagaRecord.status.in_(_IN_PROGRESS))
                .values(
                    status=SagaStatus.completed.value,
                    current_step="saving",
                    progress_percent=progress_percent,
                    pages=pages,
                    panels=panels,
                    narrative_title=narrative_title,
                    total_pages=total_pages,
                    total_panels=total_panels,
                    generation_time_seconds=generation_time_seconds,
                    cost_estimate_usd=cost_estimate_usd,
                    error_message=None,
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def finish_progress(self, saga_id: str) -> bool:
        """Trailing 100% write, applied only to a completed saga."""
        with self._session() as session:
            result = session.execute(
                update(SagaRecord)
                .where(
                    SagaRecord.id == saga_id,
                    SagaRecord.status == SagaStatus.completed.value,
                )
                .values(progress_percent=100, current_step="completed", updated_at=now_utc())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def mark_failed(self, saga_id: str, error_message: str) -> bool:
        """Terminal failure. Never overwrites a completed saga."""
        with self._session() as session:
            now = now_utc()
            result = session.execute(
                update(SagaRecord)
                .where(SagaRecord.id == saga_id, SagaRecord.status.in_(_IN_PROGRESS))
                .values(
                    status=SagaStatus.failed.value,
                    current_step="failed",
                    error_message=error_message[:2000],
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            updated = result.rowcount > 0
        if updated:
            logger.info("saga_failed", saga_id=saga_id, error=error_message[:500])
        return updated
