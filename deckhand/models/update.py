"""Update workflow models."""

from typing import Any

from pydantic import Field, field_validator

from .container import DeckhandModel
from .enums import UpdateStep


class UpdateRequest(DeckhandModel):
    """Options for updating a container to a fresh image."""

    container_id: str = Field(min_length=1)
    new_image: str | None = Field(
        default=None, description="Target image; defaults to the container's current image"
    )
    create_backup: bool = True
    overwrite_backup: bool = False
    backup_path: str | None = Field(default=None, description="Override for the backup root")
    remove_old: bool = False
    stop_timeout: int = Field(default=30, ge=0)
    start_after: bool = True

    @field_validator("new_image", "backup_path", mode="before")
    @classmethod
    def blank_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class UpdateProgress(DeckhandModel):
    """One event of an update run's timeline."""

    step: UpdateStep
    message: str
    progress: int | None = Field(default=None, ge=0, le=100)
    error: bool = False
    complete: bool = False
    details: dict[str, Any] | None = None
