"""Typed models shared by the clients, pipeline and API."""

from .schemas import (
    Adventurer,
    AdventurerStats,
    Equipment,
    EquipmentItem,
    EventData,
    FlatPanel,
    GameEvent,
    GameplayRecord,
    Page,
    Panel,
    SagaJobPayload,
    decode_job_payload,
    decode_pages,
    encode_pages,
)

__all__ = [
    "Adventurer",
    "AdventurerStats",
    "Equipment",
    "EquipmentItem",
    "EventData",
    "FlatPanel",
    "GameEvent",
    "GameplayRecord",
    "Page",
    "Panel",
    "SagaJobPayload",
    "decode_job_payload",
    "decode_pages",
    "encode_pages",
]
