"""Fail-fast environment checks, run before settings are loaded.

Each process declares its role through SAGA_ROLE and production only
demands the secrets that role actually uses:

    worker  runs the pipeline and calls the image provider
    beat    schedules stall sweeps
    api     accepts submissions and serves status reads
"""

from __future__ import annotations

import os
from functools import lru_cache
from urllib.parse import urlparse

ENVIRONMENTS = ("development", "staging", "production")

ROLE_SECRETS: dict[str, tuple[str, ...]] = {
    "worker": ("IMAGE_API_TOKEN",),
    "beat": (),
    "api": (),
}
ALLOWED_SAGA_ROLES = set(ROLE_SECRETS)

_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "0.0.0.0"})
_DEFAULT_DB_LOGINS = frozenset({("postgres", "postgres")})


def env_value(name: str) -> str:
    """Return a stripped, non-empty variable or raise RuntimeError naming it."""
    value = (os.getenv(name) or "").strip()
    if not value:
        raise RuntimeError(f"{name} is required and must be set before startup.")
    return value


def check_remote_url(name: str, value: str) -> None:
    host = urlparse(value).hostname
    if not host:
        raise RuntimeError(f"{name} must be a valid URL (missing hostname).")
    if host in _LOOPBACK_HOSTS:
        raise RuntimeError(f"{name} must not point to localhost in production.")


def check_database_url(value: str) -> None:
    """Production runs on a remote PostgreSQL with non-default credentials."""
    parsed = urlparse(value)
    if not parsed.scheme.startswith("postgresql"):
        raise RuntimeError("DATABASE_URL must use PostgreSQL in production.")
    if (parsed.username, parsed.password) in _DEFAULT_DB_LOGINS:
        raise RuntimeError("DATABASE_URL must not use default postgres credentials in production.")
    check_remote_url("DATABASE_URL", value)


@lru_cache(maxsize=1)
def validate_env() -> None:
    environment = env_value("ENVIRONMENT")
    if environment not in ENVIRONMENTS:
        raise RuntimeError(f"ENVIRONMENT must be one of: {', '.join(ENVIRONMENTS)}.")
    database_url = env_value("DATABASE_URL")
    if environment != "production":
        return

    check_database_url(database_url)
    check_remote_url("REDIS_URL", env_value("REDIS_URL"))

    role = os.getenv("SAGA_ROLE", "worker").strip()
    if role not in ROLE_SECRETS:
        raise RuntimeError(f"SAGA_ROLE must be one of: {', '.join(sorted(ROLE_SECRETS))}.")
    for name in ROLE_SECRETS[role]:
        env_value(name)
