"""ORM models for saga records and the durable job queue."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .utils.datetime_utils import now_utc

# Python None is stored as SQL NULL so "pages IS NULL" means "not written yet".
JSONDocument = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


class Base(DeclarativeBase):
    pass


class SagaStatus(str, Enum):
    """Lifecycle of a saga as seen by pollers."""

    pending = "pending"
    generating_story = "generating_story"
    generating_images = "generating_images"
    rendering = "rendering"
    completed = "completed"
    failed = "failed"

    @classmethod
    def terminal(cls) -> set["SagaStatus"]:
        return {cls.completed, cls.failed}

    @classmethod
    def in_progress(cls) -> list["SagaStatus"]:
        """Non-terminal statuses, in pipeline order."""
        return [cls.pending, cls.generating_story, cls.generating_images, cls.rendering]


class JobState(str, Enum):
    """Queue entry states."""

    waiting = "waiting"
    active = "active"
    delayed = "delayed"
    completed = "completed"
    failed = "failed"


class SagaRecord(Base):
    """Authoritative status/progress/result row for one saga."""

    __tablename__ = "sagas"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    game_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    wallet_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=SagaStatus.pending.value, index=True
    )
    progress_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_step: Mapped[str | None] = mapped_column(String(40), nullable=True)
    narrative_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    pages: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)
    panels: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONDocument, nullable=True)
    total_pages: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_panels: Mapped[int | None] = mapped_column(Integer, nullable=True)
    generation_time_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost_estimate_usd: Mapped[float | None] = mapped_column(Float, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, onupdate=now_utc
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_sagas_game_status_created", "game_id", "status", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in {s.value for s in SagaStatus.terminal()}


class SagaJob(Base):
    """One queue entry. Its id is the saga id it processes."""

    __tablename__ = "saga_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    game_id: Mapped[str] = mapped_column(String(100), nullable=False)
    wallet_id: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)
    state: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobState.waiting.value, index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stall_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enqueued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, index=True
    )
    available_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    celery_task_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_finished(self) -> bool:
        return self.state in (JobState.completed.value, JobState.failed.value)


class SagaJobStart(Base):
    """One lease grant; the rate-limit window counts these rows.

    Kept apart from ``saga_jobs`` so purging an entry does not hand back its
    slot in the window.
    """

    __tablename__ = "saga_job_starts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(36), nullable=False)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, index=True
    )
