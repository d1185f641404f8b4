"""Database persistence helpers."""

from .sagas import SagaStore

__all__ = ["SagaStore"]
