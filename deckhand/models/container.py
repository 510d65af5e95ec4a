"""Container-related data models."""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator

from .enums import ContainerStatus, ProtocolLiteral

# Labels carrying UI hints on containers
WEBUI_LABEL = "deckhand.webui"
WEBUI_PORT_LABEL = "deckhand.webui.port"
WEBUI_PATH_LABEL = "deckhand.webui.path"
ICON_LABEL = "deckhand.icon"


class DeckhandModel(BaseModel):
    """Base model with common deckhand settings."""

    def model_dump(self, **kwargs) -> dict[str, Any]:
        """Convert to dict with exclude_none by default."""
        kwargs.setdefault("exclude_none", True)
        return super().model_dump(**kwargs)


class PortMapping(DeckhandModel):
    """Host to container port publication."""

    host_ip: str = ""
    host_port: Annotated[int, Field(ge=0, le=65535)] = 0
    container_port: Annotated[int, Field(ge=1, le=65535)]
    protocol: ProtocolLiteral = "tcp"

    @field_validator("protocol", mode="before")
    @classmethod
    def normalize_protocol(cls, v: Any) -> Any:
        if v in (None, ""):
            return "tcp"
        return v.lower() if isinstance(v, str) else v

    def to_arg(self) -> str:
        """Render as a ``-p`` argument value."""
        host_port = str(self.host_port) if self.host_port else ""
        if self.host_ip:
            host_ip = self.host_ip
            if ":" in host_ip and not host_ip.startswith("["):
                host_ip = f"[{host_ip}]"
            arg = f"{host_ip}:{host_port}:{self.container_port}"
        elif host_port:
            arg = f"{host_port}:{self.container_port}"
        else:
            arg = str(self.container_port)
        if self.protocol != "tcp":
            arg = f"{arg}/{self.protocol}"
        return arg


class Mount(DeckhandModel):
    """A container mount; ``source`` is a host path for binds, a volume name otherwise."""

    source: str
    target: str
    type: Literal["bind", "volume", "tmpfs"] | str = "bind"
    read_only: bool = False

    @property
    def is_bind(self) -> bool:
        return self.type == "bind"

    def to_arg(self) -> str:
        """Render as a ``-v`` argument value."""
        arg = f"{self.source}:{self.target}"
        return f"{arg}:ro" if self.read_only else arg


class ContainerSummary(DeckhandModel):
    """Lightweight container view used for listings."""

    container_id: str
    name: str
    image: str
    status: ContainerStatus
    has_web_ui: bool = False
    icon: str = ""
    uptime: str = ""
    created: datetime | None = None
    ports: list[PortMapping] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)


class Container(DeckhandModel):
    """Detailed container state decoded from inspect output."""

    container_id: str
    name: str
    image: str
    image_id: str = ""
    status: ContainerStatus
    created: datetime | None = None
    started_at: str = ""
    finished_at: str = ""
    exit_code: int = 0
    pid: int = 0
    hostname: str = ""
    user: str = ""
    workdir: str = ""
    environment: list[str] = Field(default_factory=list)
    command: list[str] = Field(default_factory=list)
    entrypoint: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    ports: list[PortMapping] = Field(default_factory=list)
    mounts: list[Mount] = Field(default_factory=list)
    networks: list[str] = Field(default_factory=list)
    network_mode: str = ""
    restart_policy: str = ""
    cpu_limit: float = 0.0  # cores
    cpu_shares: int = 0
    memory_limit: int = 0  # bytes

    @property
    def has_web_ui(self) -> bool:
        return self.labels.get(WEBUI_LABEL) == "true"

    @property
    def icon(self) -> str:
        return self.labels.get(ICON_LABEL, "")

    @property
    def bind_mounts(self) -> list[Mount]:
        return [m for m in self.mounts if m.is_bind]


class ContainerSpec(DeckhandModel):
    """Everything needed to create a container."""

    name: str = Field(min_length=1, max_length=128)
    image: str = Field(min_length=1)
    ports: list[PortMapping] = Field(default_factory=list)
    volumes: list[Mount] = Field(default_factory=list)
    environment: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    restart_policy: str = ""  # no, always, on-failure, unless-stopped
    has_web_ui: bool = False
    web_ui_port: int = 0
    web_ui_path: str = ""
    icon: str = ""
    cpu_limit: float = Field(default=0.0, ge=0)  # cores
    cpu_shares: int = Field(default=0, ge=0)
    memory_limit: int = Field(default=0, ge=0)  # bytes
    network_mode: str = ""
    hostname: str = ""
    user: str = ""
    workdir: str = ""
    entrypoint: list[str] = Field(default_factory=list)
    command: list[str] = Field(default_factory=list)


class ContainerConfig(ContainerSpec):
    """Effective configuration snapshot of an existing container."""

    container_id: str = ""

    def with_image(self, image: str) -> ContainerSpec:
        """Spec for recreating this container from another image."""
        data = self.model_dump(exclude={"container_id"}, exclude_none=False)
        data["image"] = image
        return ContainerSpec(**data)


class ContainerStats(DeckhandModel):
    """Point-in-time resource statistics for a container."""

    container_id: str
    cpu_percent: float = 0.0
    memory_used: int = 0  # bytes
    memory_limit: int = 0  # bytes
    memory_percent: float = 0.0
    network_rx: int = 0  # bytes
    network_tx: int = 0  # bytes
    block_read: int = 0  # bytes
    block_write: int = 0  # bytes
    pids: int = 0


class ContainerLog(DeckhandModel):
    """One container log entry."""

    timestamp: datetime
    stream: Literal["stdout", "stderr"]
    message: str
