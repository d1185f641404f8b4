"""Request and response models with camelCase output."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from saga_worker.services.status import SagaView


class GenerateSagaRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    game_id: str = Field(..., alias="gameId", min_length=1, max_length=100)
    wallet_id: str = Field(..., alias="walletId", min_length=1, max_length=255)


class GenerateSagaResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId")
    status: str
    deduplicated: bool


class PanelResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    panel_number: int = Field(..., alias="panelNumber")
    narration: str
    speech_bubble: str = Field(..., alias="speechBubble")
    image_prompt: str = Field(..., alias="imagePrompt")
    scene_type: str = Field(..., alias="sceneType")
    mood: str


class PageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page_number: int = Field(..., alias="pageNumber")
    panels: list[PanelResponse]
    page_image_url: str = Field(..., alias="pageImageUrl")
    page_description: str = Field(..., alias="pageDescription")


class SagaStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: str
    progress_percent: int = Field(..., alias="progressPercent")
    current_step: str | None = Field(None, alias="currentStep")
    narrative_title: str | None = Field(None, alias="narrativeTitle")
    total_pages: int | None = Field(None, alias="totalPages")
    total_panels: int | None = Field(None, alias="totalPanels")
    pages: list[PageResponse] | None = None
    generation_time_seconds: int | None = Field(None, alias="generationTimeSeconds")
    cost_usd: float | None = Field(None, alias="costUsd")
    created_at: datetime | None = Field(None, alias="createdAt")
    completed_at: datetime | None = Field(None, alias="completedAt")
    error_message: str | None = Field(None, alias="errorMessage")

    @classmethod
    def from_view(cls, view: SagaView) -> SagaStatusResponse:
        return cls(
            id=view.id,
            status=view.status,
            progress_percent=view.progress_percent,
            current_step=view.current_step,
            narrative_title=view.narrative_title,
            total_pages=view.total_pages,
            total_panels=view.total_panels,
            pages=_pages(view),
            generation_time_seconds=view.generation_time_seconds,
            cost_usd=view.cost_usd,
            created_at=view.created_at,
            completed_at=view.completed_at,
            error_message=view.error_message,
        )


class FlatPanelResponse(PanelResponse):
    image_url: str = Field("", alias="imageUrl")


class SagaDetailResponse(SagaStatusResponse):
    """Full record, including the flat panel projection."""

    game_id: str = Field(..., alias="gameId")
    wallet_id: str = Field(..., alias="walletId")
    panels: list[FlatPanelResponse] | None = None

    @classmethod
    def from_view(cls, view: SagaView) -> SagaDetailResponse:
        base = SagaStatusResponse.from_view(view).model_dump()
        return cls(
            **base,
            game_id=view.game_id,
            wallet_id=view.wallet_id,
            panels=[FlatPanelResponse(**panel) for panel in view.panels] if view.panels else None,
        )


def _pages(view: SagaView) -> list[PageResponse] | None:
    if view.pages is None:
        return None
    return [PageResponse(**page.model_dump()) for page in view.pages]
