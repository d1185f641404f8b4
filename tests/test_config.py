"""Tests for config.py."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from saga_worker.config import ImageProviderConfig, QueueConfig, Settings


def _settings(**kwargs) -> Settings:
    return Settings(DATABASE_URL="sqlite+pysqlite:///:memory:", _env_file=None, **kwargs)


class TestQueueConfig:
    def test_defaults(self):
        config = QueueConfig()
        assert config.concurrency == 1
        assert config.max_attempts == 3
        assert config.lease_seconds == 600
        assert config.max_stalled_count == 2

    def test_rate_limit_string(self):
        assert QueueConfig().rate_limit == "10/m"
        assert QueueConfig(rate_limit_max=1, rate_limit_window_seconds=120).rate_limit == "1/m"

    def test_concurrency_pinned_to_one(self):
        with pytest.raises(ValidationError):
            QueueConfig(concurrency=2)


class TestSettings:
    def test_asyncpg_url_rewritten(self):
        settings = Settings(
            DATABASE_URL="postgresql+asyncpg://u:p@db:5432/sagas",
            _env_file=None,
        )
        assert settings.database_url == "postgresql+psycopg://u:p@db:5432/sagas"

    def test_redis_url_from_components(self):
        settings = _settings(REDIS_HOST="redis.internal", REDIS_PASSWORD="pw", REDIS_DB=4)
        assert settings.redis_url == "redis://:pw@redis.internal:6379/4"

    def test_flat_overrides_apply(self):
        settings = _settings(IMAGE_API_TOKEN="r8_abc", GAMEPLAY_GRAPHQL_URL="https://gql.test/graphql")
        assert settings.image_config.api_token == "r8_abc"
        assert settings.gameplay_config.graphql_url == "https://gql.test/graphql"

    def test_timeout_longer_than_lease_rejected(self):
        with pytest.raises(ValidationError, match="job lease"):
            _settings(image_config=ImageProviderConfig(poll_deadline_seconds=900))

    def test_timeouts_within_lease_accepted(self):
        settings = _settings()
        assert settings.image_config.poll_deadline_seconds < settings.queue_config.lease_seconds
