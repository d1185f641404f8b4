"""FastAPI dependencies for the saga API.

Overridable through ``app.dependency_overrides`` so tests can point the
routes at an in-memory store and a non-dispatching queue.
"""

from __future__ import annotations

from saga_worker.celery_app import build_job_queue
from saga_worker.persistence.sagas import SagaStore
from saga_worker.services.job_queue import JobQueue


def get_store() -> SagaStore:
    return SagaStore()


def get_queue() -> JobQueue:
    return build_job_queue()
