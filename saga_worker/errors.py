"""Error taxonomy for the saga pipeline.

Every failure the worker can see is mapped onto one of these classes so the
top-level handler can decide between retrying and failing the saga.
"""

from __future__ import annotations


class SagaError(RuntimeError):
    """Base class for pipeline errors."""

    retryable: bool = False

    def __init__(self, message: str, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage


class ValidationError(SagaError):
    """Malformed or unknown job/request. Never retried."""


class PayloadDecodeError(ValidationError):
    """A persisted document or job payload failed schema validation."""


class NotFoundError(SagaError):
    """Game or saga record missing. Permanent."""


class ProviderError(SagaError):
    """Transient failure talking to the gameplay provider or the store."""

    retryable = True


class ImageGenerationError(SagaError):
    """The image provider failed a page. Permanent for the job."""


class RateLimitedError(ImageGenerationError):
    """HTTP 429 from the image provider; carries the server's retry hint.

    Retried inside the image client only. Once its tries are spent the job
    fails like any other image error.
    """

    def __init__(self, message: str, retry_after: float, stage: str | None = None) -> None:
        super().__init__(message, stage=stage)
        self.retry_after = retry_after


class ConsistencyWarning(SagaError):
    """A read did not yet reflect a completed write. Logged, retried locally."""


def is_retryable(exc: BaseException) -> bool:
    """Return True when the queue should schedule another attempt."""
    return bool(getattr(exc, "retryable", False))
