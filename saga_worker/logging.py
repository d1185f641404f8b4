"""
structlog setup shared by the worker, beat and API processes.

Every event is a single JSON object on stdout. Per-job fields such as
``job_id`` are bound with ``structlog.contextvars`` and merged into each
event emitted while the job runs.
"""

from __future__ import annotations

import logging

import structlog

from .config import settings

SERVICE_NAME = "saga-worker"


def resolve_level(level: str | None, environment: str) -> int:
    """An explicit LOG_LEVEL wins; otherwise INFO in production and DEBUG elsewhere."""
    name = (level or "").strip().upper()
    if not name:
        name = "INFO" if environment.lower() == "production" else "DEBUG"
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: int | None = None) -> None:
    if level is None:
        level = resolve_level(settings.log_level, settings.environment)
    # Celery, SQLAlchemy and uvicorn keep logging through the stdlib
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.EventRenamer("message"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )


configure_logging()

logger = structlog.get_logger(SERVICE_NAME).bind(
    service=SERVICE_NAME,
    environment=settings.environment,
)
