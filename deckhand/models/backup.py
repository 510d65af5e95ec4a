"""Backup data models."""

from datetime import datetime

from pydantic import Field

from .container import DeckhandModel


class BackupMount(DeckhandModel):
    """One bind mount copied into a backup."""

    source: str = Field(description="Host path the container mounted")
    target: str = Field(description="Path inside the container")
    backup_path: str = Field(description="Directory holding the copied data")
    type: str = "bind"
    size_bytes: int = 0


class Backup(DeckhandModel):
    """Point-in-time copy of a container's bind mounts.

    Serialized as ``backup.json`` inside ``backup_path``; that document is the
    record of truth for the backup.
    """

    id: str = Field(description="<container name>_<timestamp>")
    container_id: str
    container_name: str
    image: str
    backup_path: str
    backup_type: str = "bind"
    mounts: list[BackupMount] = Field(default_factory=list)
    size_bytes: int = 0
    created_at: datetime
    metadata: dict[str, str] = Field(default_factory=dict)
