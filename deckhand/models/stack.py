"""Compose stack data models."""

from pydantic import Field

from .container import DeckhandModel, PortMapping
from .enums import ContainerStatus


class StackContainer(DeckhandModel):
    """A container that belongs to a compose project."""

    container_id: str = ""
    name: str
    service: str = ""
    status: ContainerStatus
    image: str = ""
    ports: list[PortMapping] = Field(default_factory=list)
