"""Pydantic models for gameplay records, saga pages and job payloads."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaValidationError

from ..errors import PayloadDecodeError

EventType = Literal["Attack", "BeastAttack", "Flee", "Discovered", "Died", "Upgraded", "Ambush"]
SceneType = Literal["battle", "discovery", "upgrade", "death", "victory", "rest"]
Mood = Literal["dramatic", "tense", "triumphant", "somber", "calm"]

PAGES_SCHEMA_VERSION = 1
JOB_PAYLOAD_SCHEMA_VERSION = 1


# ---------------------------------------------------------------------------
# Gameplay record (provider output)
# ---------------------------------------------------------------------------


class AdventurerStats(BaseModel):
    strength: int = 0
    dexterity: int = 0
    vitality: int = 0
    intelligence: int = 0
    wisdom: int = 0
    charisma: int = 0


class EquipmentItem(BaseModel):
    id: int
    name: str | None = None
    type: str | None = None


class Equipment(BaseModel):
    weapon: EquipmentItem | None = None
    chest: EquipmentItem | None = None
    head: EquipmentItem | None = None
    waist: EquipmentItem | None = None
    foot: EquipmentItem | None = None
    hand: EquipmentItem | None = None
    neck: EquipmentItem | None = None
    ring: EquipmentItem | None = None


class Adventurer(BaseModel):
    id: str
    name: str | None = None
    health: int = 0
    xp: int = 0
    level: int = 0
    gold: int = 0
    stats: AdventurerStats = Field(default_factory=AdventurerStats)
    equipment: Equipment = Field(default_factory=Equipment)

    @property
    def is_dead(self) -> bool:
        return self.health <= 0

    @property
    def display_name(self) -> str:
        return self.name or "the Hero"


class EventData(BaseModel):
    """Event payload. Provider field names are camelCase."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    damage: int | None = None
    critical_hit: bool = Field(False, alias="criticalHit")
    beast_name: str | None = Field(None, alias="beastName")
    entity_name: str | None = Field(None, alias="entityName")
    location_name: str | None = Field(None, alias="locationName")
    discovery_type: str | None = Field(None, alias="discoveryType")
    discovery_value: int | None = Field(None, alias="discoveryValue")
    beast_level: int | None = Field(None, alias="beastLevel")
    beast_health: int | None = Field(None, alias="beastHealth")


class GameEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    event_type: EventType = Field(alias="eventType")
    turn_number: int = Field(0, alias="turnNumber")
    timestamp: str | None = None
    data: EventData = Field(default_factory=EventData)


class GameplayRecord(BaseModel):
    """Adventurer plus its ordered event log, as returned by the provider."""

    game_id: str
    adventurer: Adventurer
    events: list[GameEvent] = Field(default_factory=list)

    @property
    def total_turns(self) -> int:
        return len(self.events) or self.adventurer.xp or 100


# ---------------------------------------------------------------------------
# Persisted saga documents
# ---------------------------------------------------------------------------


class Panel(BaseModel):
    panel_number: int
    narration: str
    speech_bubble: str
    image_prompt: str
    scene_type: SceneType
    mood: Mood = "dramatic"


class FlatPanel(Panel):
    """Panel in the flat projection; carries the image of the page it sits on."""

    image_url: str = ""


class Page(BaseModel):
    page_number: int
    panels: list[Panel]
    page_image_url: str
    page_description: str


class PagesDocument(BaseModel):
    schema_version: Literal[1] = PAGES_SCHEMA_VERSION
    pages: list[Page]


def encode_pages(pages: list[Page]) -> dict[str, Any]:
    """Serialize pages into the versioned JSON document stored on the saga."""
    return PagesDocument(pages=pages).model_dump(mode="json")


def decode_pages(raw: Any) -> list[Page] | None:
    """Decode the stored pages document.

    Returns None when nothing has been written yet. Accepts the current
    versioned document, a bare list of pages and JSON text of either.
    Raises PayloadDecodeError for anything else.
    """
    if raw is None:
        return None
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise PayloadDecodeError(f"pages document is not valid JSON: {exc}") from exc
    if isinstance(raw, list):
        raw = {"schema_version": PAGES_SCHEMA_VERSION, "pages": raw}
    try:
        return PagesDocument.model_validate(raw).pages
    except SchemaValidationError as exc:
        raise PayloadDecodeError(f"pages document failed validation: {exc}") from exc


# ---------------------------------------------------------------------------
# Queue payload
# ---------------------------------------------------------------------------


class SagaJobPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    schema_version: Literal[1] = JOB_PAYLOAD_SCHEMA_VERSION
    job_id: UUID
    game_id: str = Field(min_length=1, max_length=100)
    wallet_id: str = Field(min_length=1, max_length=255)
    enqueued_at: datetime | None = None


def decode_job_payload(raw: Any) -> SagaJobPayload:
    """Validate a job payload delivered by the queue."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise PayloadDecodeError(f"job payload is not valid JSON: {exc}") from exc
    try:
        return SagaJobPayload.model_validate(raw)
    except SchemaValidationError as exc:
        raise PayloadDecodeError(f"job payload failed validation: {exc}") from exc
