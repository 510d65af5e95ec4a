"""Image-related data models."""

from datetime import datetime

from pydantic import Field

from .container import DeckhandModel
from .enums import ProtocolLiteral


class Image(DeckhandModel):
    """A local image."""

    image_id: str
    repository: str = ""
    tag: str = ""
    size: int = 0
    created: datetime | None = None
    containers: int = 0


class ImagePort(DeckhandModel):
    """Port declared with EXPOSE."""

    port: int
    protocol: ProtocolLiteral | str = "tcp"


class ImageEnvVar(DeckhandModel):
    """Environment variable declared by an image."""

    key: str
    value: str = ""
    has_value: bool = False


class ImageConfig(DeckhandModel):
    """Configuration hints extracted from an image."""

    image: str
    exposed_ports: list[ImagePort] = Field(default_factory=list)
    environment: list[ImageEnvVar] = Field(default_factory=list)
    volumes: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    working_dir: str = ""
    user: str = ""
    entrypoint: list[str] = Field(default_factory=list)
    cmd: list[str] = Field(default_factory=list)


class ImageUpdateCheck(DeckhandModel):
    """Result of comparing a local image digest with the registry's."""

    image: str
    local_digest: str
    remote_digest: str

    @property
    def has_update(self) -> bool:
        return self.local_digest != self.remote_digest
