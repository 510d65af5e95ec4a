"""Engine settings for deckhand operations.

Provides centralized engine and timeout configuration using Pydantic BaseSettings
with environment variable support for operational tuning.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Container engine, backup and timeout configuration."""

    engine_binary: str = Field("podman", description="Container engine executable")
    compose_binary: str = Field("podman-compose", description="Compose tool executable")
    default_registry: str = Field(
        "docker.io", description="Registry prefixed onto unqualified image references"
    )
    engine_debug: bool = Field(False, description="Log every engine invocation at debug level")
    podman_user: str | None = Field(
        None, description="Explicit user whose rootless engine instance is addressed"
    )
    backup_root: Path = Field(
        Path.home() / ".deckhand" / "backups", description="Root directory for container backups"
    )

    cli_timeout: int = Field(60, description="Engine CLI command timeout in seconds")
    stop_timeout: int = Field(30, description="Grace period for container stop in seconds")
    pull_timeout: int = Field(1800, description="Image pull timeout in seconds")
    compose_timeout: int = Field(600, description="Compose command timeout in seconds")
    backup_timeout: int = Field(3600, description="Per-mount copy timeout in seconds")

    stream_queue_size: int = Field(256, ge=1, description="Bounded channel size for streams")
    stream_shutdown_timeout: float = Field(
        5.0, description="Seconds stream workers get to exit after cancellation"
    )
    image_exists_ttl: float = Field(30.0, description="TTL of cached image existence checks")

    model_config = SettingsConfigDict(env_prefix="DECKHAND_", env_file=".env", extra="ignore")
