"""
Typed settings for the saga generation service.

Uses Pydantic Settings to load configuration from environment variables
with validation and type safety. Settings are loaded from the repository
root .env file so the worker, beat and API processes share one source.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .validate_env import validate_env


class QueueConfig(BaseModel):
    name: str = "saga-generation"
    # One job at a time; the image provider budget is shared by every page.
    concurrency: int = Field(default=1, ge=1, le=1)
    rate_limit_max: int = 10
    rate_limit_window_seconds: int = 60
    lease_seconds: int = 600
    stalled_interval_seconds: int = 30
    max_stalled_count: int = 2
    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    purge_states: list[str] = Field(
        default_factory=lambda: ["waiting", "completed", "failed", "delayed"]
    )
    # Delays between attempts when talking to the transport (dispatch/revoke)
    transport_retry_delays: list[float] = Field(default_factory=lambda: [0.5, 1.0, 2.0])
    # A saga with no queue entry this long after creation is failed by the sweeper
    orphan_grace_seconds: int = 60

    @property
    def rate_limit(self) -> str:
        """Celery rate_limit string (tasks per minute)."""
        per_minute = self.rate_limit_max * 60 // self.rate_limit_window_seconds
        return f"{max(per_minute, 1)}/m"


class PipelineConfig(BaseModel):
    target_scenes: int = Field(default=20, ge=1, le=20)
    panels_per_page: int = Field(default=4, ge=1, le=4)
    dedup_window_seconds: int = 300
    cost_estimate_usd: float = 0.09
    images_progress_start: int = 30
    images_progress_end: int = 90
    reconcile_delays_seconds: list[float] = Field(default_factory=lambda: [0.5, 1.0, 2.0])


class GameplayProviderConfig(BaseModel):
    graphql_url: str = "https://api.cartridge.gg/x/pg-mainnet-10/torii/graphql"
    request_timeout_seconds: float = 10.0
    max_events: int = 200
    event_page_size: int = 100


class ImageProviderConfig(BaseModel):
    base_url: str = "https://api.replicate.com/v1"
    model: str = "black-forest-labs/flux-dev"
    api_token: str | None = None
    request_timeout_seconds: float = 120.0
    # How long a single prediction may stay pending before it is abandoned
    poll_deadline_seconds: float = 300.0
    poll_interval_seconds: float = 2.0
    # Replicate free tier allows a burst of 1, so pages are spaced out
    inter_request_delay_seconds: float = 10.0
    rate_limit_max_tries: int = 3
    rate_limit_buffer_seconds: float = 2.0
    rate_limit_min_wait_seconds: float = 12.0
    default_retry_after_seconds: float = 10.0
    width: int = 1024
    height: int = 1024
    guidance_scale: float = 3.5
    num_inference_steps: int = 28
    output_format: str = "webp"
    output_quality: int = 90


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    In Docker, environment variables are passed directly. For local
    development the root .env file is read as well.
    """
    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[1] / ".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="allow",
    )

    database_url: str = Field(..., alias="DATABASE_URL")

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_async_to_sync(cls, v: str) -> str:
        """
        Convert an asyncpg URL to psycopg.

        The worker, beat and API all use the synchronous engine, so a
        shared DATABASE_URL written for asyncpg is rewritten here.
        """
        if isinstance(v, str) and "asyncpg" in v:
            return v.replace("asyncpg", "psycopg")
        return v

    # Redis configuration - can be set via REDIS_URL or constructed from components
    redis_url: str = Field("redis://localhost:6379/3", alias="REDIS_URL")
    redis_host: str = Field("localhost", alias="REDIS_HOST")
    redis_password: str | None = Field(None, alias="REDIS_PASSWORD")
    redis_db: int = Field(3, alias="REDIS_DB")

    @model_validator(mode="after")
    def _build_redis_url(self) -> Settings:
        """Build the Redis URL from components when REDIS_HOST is not localhost."""
        if self.redis_host != "localhost":
            if self.redis_password:
                self.redis_url = f"redis://:{self.redis_password}@{self.redis_host}:6379/{self.redis_db}"
            else:
                self.redis_url = f"redis://{self.redis_host}:6379/{self.redis_db}"
        return self

    environment: str = Field("development", alias="ENVIRONMENT")
    log_level: str | None = Field(None, alias="LOG_LEVEL")
    sql_echo: bool = Field(False, alias="SQL_ECHO")
    queue_config: QueueConfig = Field(default_factory=QueueConfig)
    pipeline_config: PipelineConfig = Field(default_factory=PipelineConfig)
    gameplay_config: GameplayProviderConfig = Field(default_factory=GameplayProviderConfig)
    image_config: ImageProviderConfig = Field(default_factory=ImageProviderConfig)
    gameplay_graphql_url: str | None = Field(None, alias="GAMEPLAY_GRAPHQL_URL")
    image_api_token: str | None = Field(None, alias="IMAGE_API_TOKEN")
    image_api_url: str | None = Field(None, alias="IMAGE_API_URL")

    @model_validator(mode="after")
    def _apply_provider_overrides(self) -> Settings:
        """Let flat env vars override the nested provider configs."""
        if self.gameplay_graphql_url:
            self.gameplay_config.graphql_url = self.gameplay_graphql_url
        if self.image_api_token:
            self.image_config.api_token = self.image_api_token
        if self.image_api_url:
            self.image_config.base_url = self.image_api_url
        return self

    @model_validator(mode="after")
    def _timeouts_within_lease(self) -> Settings:
        """Every external call must finish before the job lease can expire."""
        lease = self.queue_config.lease_seconds
        timeouts = {
            "gameplay request timeout": self.gameplay_config.request_timeout_seconds,
            "image request timeout": self.image_config.request_timeout_seconds,
            "image poll deadline": self.image_config.poll_deadline_seconds,
        }
        for name, value in timeouts.items():
            if value >= lease:
                raise ValueError(
                    f"{name} ({value}s) must be shorter than the job lease ({lease}s)"
                )
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return cached settings instance.

    Settings are cached to avoid re-parsing environment variables
    on every access.
    """
    validate_env()
    return Settings()


# Global settings instance - import this in other modules
settings = get_settings()
