"""Shared pytest fixtures and configuration."""

from __future__ import annotations

import os
from datetime import datetime, timedelta
from typing import Any, Callable

import pytest

# Set required environment variables before any imports
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from saga_worker.clients.images import ImageResult  # noqa: E402
from saga_worker.config import PipelineConfig, QueueConfig  # noqa: E402
from saga_worker.db_models import Base  # noqa: E402
from saga_worker.errors import ImageGenerationError  # noqa: E402
from saga_worker.models.schemas import (  # noqa: E402
    Adventurer,
    AdventurerStats,
    Equipment,
    EquipmentItem,
    GameEvent,
    GameplayRecord,
)
from saga_worker.persistence.sagas import SagaStore  # noqa: E402
from saga_worker.services.job_queue import JobQueue  # noqa: E402
from saga_worker.utils.datetime_utils import now_utc  # noqa: E402


class FakeClock:
    """Mutable clock for lease and backoff arithmetic."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or now_utc()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingDispatcher:
    def __init__(self) -> None:
        self.dispatched: list[tuple[str, float | None]] = []
        self.revoked: list[str] = []

    def dispatch(self, job_id: str, payload: dict[str, Any], countdown: float | None = None) -> str:
        self.dispatched.append((job_id, countdown))
        return f"task-{len(self.dispatched)}"

    def revoke(self, task_id: str) -> None:
        self.revoked.append(task_id)


class FakeGameplay:
    """Gameplay source returning canned records; failures are scripted per call."""

    def __init__(self, record: GameplayRecord | None = None, timeline: list[str] | None = None) -> None:
        self.record = record
        self.records: dict[str, GameplayRecord] = {}
        self.calls: list[str] = []
        self.failures: list[Exception] = []
        self.timeline = timeline if timeline is not None else []

    def fetch(self, game_id: str) -> GameplayRecord:
        self.calls.append(game_id)
        self.timeline.append(f"fetch:{game_id}")
        if self.failures:
            raise self.failures.pop(0)
        record = self.records.get(game_id) or self.record or make_record(game_id=game_id)
        return record.model_copy(update={"game_id": game_id})


class FakeRenderer:
    """Image renderer double; can fail on a given call and run a hook per call."""

    def __init__(
        self,
        fail_on_call: int | None = None,
        hook: Callable[[int], None] | None = None,
        timeline: list[str] | None = None,
    ) -> None:
        self.fail_on_call = fail_on_call
        self.hook = hook
        self.calls: list[tuple[str, int]] = []
        self.timeline = timeline if timeline is not None else []

    def generate(self, prompt: str, seed: int) -> ImageResult:
        self.calls.append((prompt, seed))
        self.timeline.append(f"render:{seed}")
        if self.hook is not None:
            self.hook(len(self.calls))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise ImageGenerationError("prediction failed: NSFW content detected", stage="illustrate")
        return ImageResult(url=f"https://images.test/{seed}.webp", seed=seed, processing_ms=5)


def make_event(
    event_id: str,
    event_type: str,
    turn: int,
    **data: Any,
) -> GameEvent:
    return GameEvent.model_validate(
        {"id": event_id, "eventType": event_type, "turnNumber": turn, "data": data}
    )


def make_adventurer(health: int = 0, level: int = 12, name: str | None = "Aria") -> Adventurer:
    return Adventurer(
        id="0x2a",
        name=name,
        health=health,
        xp=340,
        level=level,
        gold=85,
        stats=AdventurerStats(strength=9, dexterity=6, vitality=5, intelligence=3, wisdom=4, charisma=2),
        equipment=Equipment(
            weapon=EquipmentItem(id=42, name="Grimoire", type="Magic"),
            chest=EquipmentItem(id=16, name="Divine Robe", type="Cloth"),
        ),
    )


def make_events(count: int, died: bool = True) -> list[GameEvent]:
    kinds = ["Attack", "BeastAttack", "Discovered", "Attack", "Upgraded", "Flee"]
    events = []
    for i in range(count):
        kind = kinds[i % len(kinds)]
        events.append(
            make_event(
                f"ev-{i}",
                kind,
                i + 1,
                damage=(i * 7) % 45,
                beastName="Troll" if kind in ("Attack", "BeastAttack", "Flee") else None,
                entityName="Health Potion" if kind == "Discovered" else None,
                criticalHit=i % 9 == 0,
            )
        )
    if died:
        events.append(make_event("ev-died", "Died", count + 1, beastName="Chimera", damage=61))
    return events


def make_record(
    game_id: str = "12345",
    events: list[GameEvent] | None = None,
    health: int = 0,
) -> GameplayRecord:
    return GameplayRecord(
        game_id=game_id,
        adventurer=make_adventurer(health=health),
        events=make_events(30) if events is None else events,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def queue_config():
    return QueueConfig()


@pytest.fixture
def pipeline_config():
    return PipelineConfig()


@pytest.fixture
def store(session_factory):
    return SagaStore(session_factory)


@pytest.fixture
def queue(session_factory, queue_config, dispatcher, clock, sleeps):
    return JobQueue(
        session_factory,
        config=queue_config,
        dispatcher=dispatcher,
        clock=clock,
        sleep=sleeps.append,
    )


@pytest.fixture
def timeline():
    return []


@pytest.fixture
def gameplay(timeline):
    return FakeGameplay(timeline=timeline)


@pytest.fixture
def renderer(timeline):
    return FakeRenderer(timeline=timeline)
