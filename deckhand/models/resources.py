"""Volume and network data models."""

from datetime import datetime

from pydantic import Field

from .container import DeckhandModel


class Volume(DeckhandModel):
    """An engine-managed named volume."""

    name: str
    driver: str = "local"
    mount_point: str = ""
    created_at: datetime | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    scope: str = ""
    options: dict[str, str] = Field(default_factory=dict)


class VolumeSpec(DeckhandModel):
    """Request to create a volume."""

    name: str = Field(min_length=1)
    driver: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    options: dict[str, str] = Field(default_factory=dict)


class Network(DeckhandModel):
    """An engine network."""

    network_id: str = ""
    name: str
    driver: str = ""
    subnet: str = ""
    gateway: str = ""
    internal: bool = False
    ipv6: bool = False
    labels: dict[str, str] = Field(default_factory=dict)
    options: dict[str, str] = Field(default_factory=dict)
    created_at: datetime | None = None


class NetworkSpec(DeckhandModel):
    """Request to create a network."""

    name: str = Field(min_length=1)
    driver: str = ""
    subnet: str = ""
    gateway: str = ""
    internal: bool = False
    ipv6: bool = False
    labels: dict[str, str] = Field(default_factory=dict)
    options: dict[str, str] = Field(default_factory=dict)
