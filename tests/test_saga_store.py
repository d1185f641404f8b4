"""Tests for persistence/sagas.py."""

from __future__ import annotations

import uuid
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from saga_worker.db_models import SagaStatus
from saga_worker.errors import ProviderError
from saga_worker.models.schemas import SagaJobPayload
from saga_worker.persistence.sagas import SagaStore
from saga_worker.utils.datetime_utils import now_utc


def _new(store: SagaStore, game_id: str = "777") -> str:
    saga_id = str(uuid.uuid4())
    store.create(saga_id, game_id, "0xwallet")
    return saga_id


def _complete(store: SagaStore, saga_id: str) -> bool:
    return store.mark_completed(
        saga_id,
        pages={"schema_version": 1, "pages": []},
        panels=[],
        narrative_title="The Fall of Aria",
        total_pages=0,
        total_panels=0,
        generation_time_seconds=42,
        cost_estimate_usd=0.09,
    )


class TestCreate:
    def test_new_saga_is_pending(self, store):
        saga_id = _new(store)
        record = store.get(saga_id)
        assert record.status == SagaStatus.pending.value
        assert record.progress_percent == 0
        assert record.current_step == "queued"
        assert record.pages is None

    def test_get_unknown(self, store):
        assert store.get(str(uuid.uuid4())) is None


class TestProgress:
    """Progress never moves backwards and never touches a finished saga."""

    def test_advances(self, store):
        saga_id = _new(store)
        assert store.update_progress(saga_id, "generating_story", 30, SagaStatus.generating_story)
        record = store.get(saga_id)
        assert (record.progress_percent, record.status) == (30, "generating_story")

    def test_lower_value_rejected(self, store):
        saga_id = _new(store)
        store.update_progress(saga_id, "generating_images", 60, SagaStatus.generating_images)
        assert not store.update_progress(saga_id, "fetching_data", 10, SagaStatus.pending)
        record = store.get(saga_id)
        assert record.progress_percent == 60
        assert record.current_step == "generating_images"

    def test_clamped(self, store):
        saga_id = _new(store)
        store.update_progress(saga_id, "saving", 250, SagaStatus.rendering)
        assert store.get(saga_id).progress_percent == 100

    def test_terminal_untouched(self, store):
        saga_id = _new(store)
        store.mark_failed(saga_id, "boom")
        assert not store.update_progress(saga_id, "saving", 99, SagaStatus.rendering)
        assert store.get(saga_id).status == "failed"


class TestCompletion:
    def test_completed_then_finished(self, store):
        saga_id = _new(store)
        assert _complete(store, saga_id)
        record = store.get(saga_id)
        assert (record.status, record.progress_percent, record.current_step) == ("completed", 99, "saving")
        assert record.completed_at is not None

        assert store.finish_progress(saga_id)
        record = store.get(saga_id)
        assert (record.progress_percent, record.current_step) == (100, "completed")

    def test_finish_progress_requires_completed(self, store):
        saga_id = _new(store)
        assert not store.finish_progress(saga_id)

    def test_failed_never_overwrites_completed(self, store):
        saga_id = _new(store)
        _complete(store, saga_id)
        assert not store.mark_failed(saga_id, "late failure")
        assert store.get(saga_id).status == "completed"

    def test_completed_never_overwrites_failed(self, store):
        saga_id = _new(store)
        store.mark_failed(saga_id, "boom")
        assert not _complete(store, saga_id)
        record = store.get(saga_id)
        assert record.status == "failed"
        assert record.pages is None
        assert record.error_message == "boom"


class TestFindRecentActive:
    def test_finds_in_progress_saga(self, store):
        saga_id = _new(store, game_id="55")
        found = store.find_recent_active("55", now_utc() - timedelta(minutes=5))
        assert found.id == saga_id

    def test_ignores_terminal_and_other_games(self, store):
        saga_id = _new(store, game_id="55")
        store.mark_failed(saga_id, "boom")
        _new(store, game_id="56")
        assert store.find_recent_active("55", now_utc() - timedelta(minutes=5)) is None

    def test_ignores_old(self, store):
        _new(store, game_id="55")
        assert store.find_recent_active("55", now_utc() + timedelta(seconds=1)) is None


class TestFindOrphaned:
    """In-progress sagas with no queue entry behind them."""

    def test_only_unqueued_in_progress_sagas(self, store, queue):
        queued = _new(store, game_id="1")
        queue.enqueue(SagaJobPayload(job_id=uuid.UUID(queued), game_id="1", wallet_id="0xwallet"))
        orphan = _new(store, game_id="2")
        finished = _new(store, game_id="3")
        store.mark_failed(finished, "boom")
        assert store.find_orphaned(now_utc() + timedelta(seconds=1)) == [orphan]

    def test_respects_cutoff(self, store):
        _new(store)
        assert store.find_orphaned(now_utc() - timedelta(minutes=1)) == []


class TestStoreErrors:
    def test_database_errors_are_provider_errors(self):
        """Store outages are transient and retryable."""
        factory = MagicMock(side_effect=OperationalError("SELECT 1", {}, Exception("db down")))
        store = SagaStore(factory)
        with pytest.raises(ProviderError):
            store.get("x")
