"""Four-stage saga pipeline: fetch, extract, illustrate, assemble.

The pipeline runs one leased job from the top every time it is invoked.
Errors propagate to the worker, which decides between retry and failure.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol, Sequence

from ..config import ImageProviderConfig, PipelineConfig, settings
from ..db_models import SagaRecord
from ..logging import logger
from ..models.schemas import FlatPanel, GameplayRecord, Page, Panel, encode_pages
from ..persistence.sagas import SagaStore
from ..utils.datetime_utils import seconds_since
from .consistency import VERIFY_STATUSES, await_pages
from .illustration import PageRenderer, illustrate_pages, wallet_seed
from .progress import ProgressReporter, Stage
from .scene_extractor import ComicPage, extract_scenes, group_into_pages, narrative_title


class GameplaySource(Protocol):
    def fetch(self, game_id: str) -> GameplayRecord: ...


@dataclass(frozen=True)
class SagaRun:
    saga_id: str
    game_id: str
    wallet_id: str
    enqueued_at: datetime


def build_pages(comic_pages: Sequence[ComicPage], image_urls: Sequence[str]) -> list[Page]:
    if len(comic_pages) != len(image_urls):
        raise ValueError("every page needs exactly one image")
    pages: list[Page] = []
    for comic_page, url in zip(comic_pages, image_urls):
        panels = [
            Panel(
                panel_number=scene.panel_number,
                narration=scene.narration,
                speech_bubble=scene.speech_bubble,
                image_prompt=scene.description,
                scene_type=scene.scene_type,
                mood=scene.mood,
            )
            for scene in comic_page.scenes
        ]
        pages.append(
            Page(
                page_number=comic_page.page_number,
                panels=panels,
                page_image_url=url,
                page_description=comic_page.page_description,
            )
        )
    return pages


def flatten_panels(pages: Sequence[Page]) -> list[dict[str, Any]]:
    """Flat panel projection; each panel carries its page's image."""
    return [
        FlatPanel(**panel.model_dump(), image_url=page.page_image_url).model_dump(mode="json")
        for page in pages
        for panel in page.panels
    ]


class SagaPipeline:
    def __init__(
        self,
        store: SagaStore,
        gameplay: GameplaySource,
        renderer: PageRenderer,
        config: PipelineConfig | None = None,
        image_config: ImageProviderConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.gameplay = gameplay
        self.renderer = renderer
        self.config = config or settings.pipeline_config
        self.image_config = image_config or settings.image_config
        self._sleep = sleep

    def run(self, job: SagaRun, reporter: ProgressReporter) -> SagaRecord | None:
        # Stage 1
        reporter.report(Stage.fetching_data, 10)
        record = self.gameplay.fetch(job.game_id)

        # Stage 2
        reporter.report(Stage.generating_story, 30)
        scenes = extract_scenes(record, target_scenes=self.config.target_scenes)
        comic_pages = group_into_pages(scenes, panels_per_page=self.config.panels_per_page)
        logger.info(
            "saga_script_ready",
            saga_id=job.saga_id,
            scenes=len(scenes),
            pages=len(comic_pages),
            events=len(record.events),
        )

        # Stage 3
        reporter.report(Stage.generating_images, self.config.images_progress_start)
        image_urls = illustrate_pages(
            comic_pages,
            self.renderer,
            wallet_seed(job.wallet_id),
            delay_seconds=self.image_config.inter_request_delay_seconds,
            on_page_done=reporter.page_done,
            sleep=self._sleep,
        )

        # Stage 4
        reporter.report(Stage.saving, 95)
        pages = build_pages(comic_pages, image_urls)
        panels = flatten_panels(pages)
        reporter.report(Stage.saving, 99)

        written = self.store.mark_completed(
            job.saga_id,
            pages=encode_pages(pages),
            panels=panels,
            narrative_title=narrative_title(record.adventurer),
            total_pages=len(pages),
            total_panels=len(panels),
            generation_time_seconds=max(int(seconds_since(job.enqueued_at)), 0),
            cost_estimate_usd=self.config.cost_estimate_usd,
        )
        if not written:
            logger.warning("saga_completion_skipped", saga_id=job.saga_id)
            return self.store.get(job.saga_id)

        self.store.finish_progress(job.saga_id)
        logger.info("saga_completed", saga_id=job.saga_id, pages=len(pages), panels=len(panels))
        return await_pages(
            lambda: self.store.get(job.saga_id),
            job.saga_id,
            self.config.reconcile_delays_seconds,
            statuses=VERIFY_STATUSES,
            sleep=self._sleep,
        )
