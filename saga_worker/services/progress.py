"""Best-effort progress reporting for a running saga.

Each write also renews the job lease, so a worker that keeps reporting is
never mistaken for a stalled one. Nothing here raises: a failed write is
logged and the pipeline carries on.
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol

from ..db_models import SagaStatus
from ..logging import logger


class Stage(str, Enum):
    fetching_data = "fetching_data"
    generating_story = "generating_story"
    generating_images = "generating_images"
    saving = "saving"

    @property
    def status(self) -> SagaStatus:
        return _STAGE_STATUS[self]


_STAGE_STATUS = {
    Stage.fetching_data: SagaStatus.pending,
    Stage.generating_story: SagaStatus.generating_story,
    Stage.generating_images: SagaStatus.generating_images,
    Stage.saving: SagaStatus.rendering,
}


def ordered_stages() -> list[Stage]:
    return list(Stage)


class ProgressWriter(Protocol):
    def update_progress(self, saga_id: str, step: str, percent: int, status: SagaStatus) -> bool: ...


class LeaseKeeper(Protocol):
    def renew(self, job_id: str) -> bool: ...


class ProgressReporter:
    def __init__(
        self,
        saga_id: str,
        store: ProgressWriter,
        lease: LeaseKeeper | None = None,
        *,
        images_start: int = 30,
        images_end: int = 90,
    ) -> None:
        self.saga_id = saga_id
        self.store = store
        self.lease = lease
        self.images_start = images_start
        self.images_end = images_end
        self.last_percent = 0

    def report(self, stage: Stage, percent: int) -> None:
        self._heartbeat()
        try:
            applied = self.store.update_progress(self.saga_id, stage.value, percent, stage.status)
        except Exception as exc:
            logger.warning(
                "saga_progress_write_failed",
                saga_id=self.saga_id,
                step=stage.value,
                percent=percent,
                error=str(exc),
            )
            return
        if applied:
            self.last_percent = max(self.last_percent, percent)
        else:
            logger.debug("saga_progress_write_skipped", saga_id=self.saga_id, step=stage.value, percent=percent)

    def image_percent(self, done: int, total: int) -> int:
        """Progress inside the illustration band: ``start + floor(done/total * span)``."""
        if total <= 0:
            return self.images_end
        span = self.images_end - self.images_start
        return self.images_start + (done * span) // total

    def page_done(self, done: int, total: int) -> None:
        self.report(Stage.generating_images, self.image_percent(done, total))

    def _heartbeat(self) -> None:
        if self.lease is None:
            return
        try:
            if not self.lease.renew(self.saga_id):
                logger.warning("job_lease_not_renewed", job_id=self.saga_id)
        except Exception as exc:
            logger.warning("job_lease_renew_failed", job_id=self.saga_id, error=str(exc))
