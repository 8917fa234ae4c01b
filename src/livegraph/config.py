"""Service settings, read from ``LIVEGRAPH_*`` environment variables or ``.env``."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # durable store: memory://, file:///dir, or an async SQLAlchemy URL
    store_url: str = "memory://"
    # segregates this system's records (table name / subdirectory)
    namespace: str = Field("diagrams", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")

    host: str = "localhost"
    port: int = Field(3001, ge=0, le=65535)
    max_message_size: int | None = 10 * 1024 * 1024
    outbox_size: int = Field(256, gt=0)
    persist_queue_size: int = Field(1024, gt=0)

    # seconds an empty room's cache entry may sit untouched; None keeps it forever
    cache_idle_ttl: float | None = None
    eviction_interval: float = Field(60.0, gt=0)

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="LIVEGRAPH_", env_file=".env", extra="ignore")
