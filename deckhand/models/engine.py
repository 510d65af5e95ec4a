"""Tolerant decoders for engine JSON output.

Engine releases disagree on the shape of several fields. Each such field is
declared with an annotated type whose single ``BeforeValidator`` folds every
known shape into one canonical form; unknown keys are ignored.
"""

import re
from datetime import datetime
from typing import Annotated, Any, TypeVar

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from ..constants import INTERNAL_LABEL_PREFIXES
from ..core.exceptions import ParseError
from ..utils import parse_bytes, parse_io_pair, parse_percentage, parse_timestamp
from .container import (
    ICON_LABEL,
    WEBUI_LABEL,
    WEBUI_PATH_LABEL,
    WEBUI_PORT_LABEL,
    Container,
    ContainerConfig,
    ContainerStats,
    ContainerSummary,
    Mount,
    PortMapping,
)
from .enums import parse_status
from .image import Image, ImageConfig, ImageEnvVar, ImagePort
from .resources import Network, Volume

_PORT_STRING_RE = re.compile(
    r"^(?:(?P<ip>\[[^\]]*\]|[^:]*):)?(?:(?P<host>[\d-]+)->)?(?P<container>[\d-]+)(?:/(?P<proto>\w+))?$"
)


def _text(value: Any) -> Any:
    return "" if value is None else value


def _mapping(value: Any) -> Any:
    return {} if value is None else value


def _names(value: Any) -> list[str]:
    """Names arrive as a list, a comma-separated string, or null."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(v).strip().lstrip("/") for v in value if str(v).strip()]


def _string_list(value: Any) -> list[str]:
    """Command, Cmd, Entrypoint and Env arrive as a string, a list, or null."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    return [str(v) for v in value]


def _mounts(value: Any) -> list[dict[str, Any]]:
    """Mounts arrive as a string, a list of destinations, or a list of objects."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    result = []
    for item in value:
        if isinstance(item, str):
            if item.strip():
                result.append({"Destination": item.strip()})
        elif isinstance(item, dict):
            result.append(item)
    return result


def _created(value: Any) -> datetime | None:
    """Created arrives as unix seconds or an ISO timestamp."""
    if isinstance(value, datetime):
        return value
    return parse_timestamp(value)


def _port_span(value: Any) -> tuple[int, int]:
    """Return (first, count) for '8080', 8080 or '8080-8082'."""
    if value in (None, ""):
        return 0, 1
    if isinstance(value, str) and "-" in value:
        low, _, high = value.partition("-")
        return int(low), int(high) - int(low) + 1
    return int(value), 1


def _pick(item: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in item and item[key] is not None:
            return item[key]
    return default


def _ports(value: Any) -> list[dict[str, Any]]:
    """Ports arrive as snake_case objects, PascalCase objects, or CLI strings.

    Ranges (``range`` > 1 or ``a-b`` spans) are expanded into one entry per port.
    """
    if not value:
        return []
    if isinstance(value, str):
        value = [part.strip() for part in value.split(",")]

    result: list[dict[str, Any]] = []
    for item in value:
        if isinstance(item, str):
            match = _PORT_STRING_RE.match(item)
            if not match:
                continue
            host_ip = (match.group("ip") or "").strip("[]")
            host, count = _port_span(match.group("host"))
            container, _ = _port_span(match.group("container"))
            protocol = match.group("proto") or "tcp"
        elif isinstance(item, dict):
            host_ip = _pick(item, "host_ip", "HostIp", "HostIP", "hostIP", "IP", default="")
            host, host_count = _port_span(
                _pick(item, "host_port", "HostPort", "hostPort", "PublicPort")
            )
            container, container_count = _port_span(
                _pick(item, "container_port", "ContainerPort", "containerPort", "PrivatePort")
            )
            protocol = _pick(item, "protocol", "Protocol", "Type", default="tcp")
            count = max(int(_pick(item, "range", "Range", default=1) or 1), host_count, container_count)
        else:
            continue
        if not container:
            continue
        for offset in range(count):
            result.append(
                {
                    "host_ip": host_ip,
                    "host_port": host + offset if host else 0,
                    "container_port": container + offset,
                    "protocol": protocol or "tcp",
                }
            )
    return result


def _scalar(value: Any) -> Any:
    """Stats fields arrive as text or, on some engine versions, as numbers."""
    return "" if value is None else str(value)


def _byte_count(value: Any) -> Any:
    """Sizes arrive as byte counts or as text like '12.5MB'."""
    if value is None:
        return 0
    if isinstance(value, str):
        return parse_bytes(value)
    return value


def _port_bindings(value: Any) -> list[dict[str, Any]]:
    """Fold an inspect ``{"80/tcp": [{"HostIp": "", "HostPort": "8080"}]}`` map."""
    if not value:
        return []
    if isinstance(value, list):
        return _ports(value)
    result: list[dict[str, Any]] = []
    for spec, bindings in value.items():
        port, _, protocol = spec.partition("/")
        for binding in bindings or []:
            result.extend(
                _ports(
                    [
                        {
                            "HostIp": binding.get("HostIp", ""),
                            "HostPort": binding.get("HostPort", ""),
                            "ContainerPort": port,
                            "Protocol": protocol or "tcp",
                        }
                    ]
                )
            )
    return result


Text = Annotated[str, BeforeValidator(_text)]
StrMap = Annotated[dict[str, str], BeforeValidator(_mapping)]
AnyMap = Annotated[dict[str, Any], BeforeValidator(_mapping)]
NameList = Annotated[list[str], BeforeValidator(_names)]
StringList = Annotated[list[str], BeforeValidator(_string_list)]
CreatedTime = Annotated[datetime | None, BeforeValidator(_created)]
PortList = Annotated[list[PortMapping], BeforeValidator(_ports)]
PortBindingList = Annotated[list[PortMapping], BeforeValidator(_port_bindings)]
Scalar = Annotated[str, BeforeValidator(_scalar)]
ByteCount = Annotated[int, BeforeValidator(_byte_count)]


class EngineModel(BaseModel):
    """Base for decoded engine output: ignores unknown keys."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


M = TypeVar("M", bound=EngineModel)


class MountEntry(EngineModel):
    type: Text = Field(default="", alias="Type")
    name: Text = Field(default="", alias="Name")
    source: Text = Field(default="", alias="Source")
    destination: Text = Field(default="", alias="Destination")
    rw: bool = Field(default=True, alias="RW")

    def to_mount(self) -> Mount:
        # Named volumes are re-attached by name, not by their storage path
        source = self.name if self.type == "volume" and self.name else self.source
        return Mount(
            source=source,
            target=self.destination,
            type=self.type or "bind",
            read_only=not self.rw,
        )


MountList = Annotated[list[MountEntry], BeforeValidator(_mounts)]


def _split_web_ui(labels: dict[str, str]) -> tuple[dict[str, str], dict[str, Any]]:
    """Separate UI hint labels from user labels."""
    labels = dict(labels)
    hints: dict[str, Any] = {
        "has_web_ui": labels.pop(WEBUI_LABEL, "") == "true",
        "web_ui_path": labels.pop(WEBUI_PATH_LABEL, ""),
        "icon": labels.pop(ICON_LABEL, ""),
    }
    port = labels.pop(WEBUI_PORT_LABEL, "")
    hints["web_ui_port"] = int(port) if port.isdigit() else 0
    return labels, hints


class PsEntry(EngineModel):
    """One element of ``ps --all --format json``."""

    id: Text = Field(default="", validation_alias=AliasChoices("Id", "ID", "id"))
    names: NameList = Field(default_factory=list, alias="Names")
    image: Text = Field(default="", alias="Image")
    state: Text = Field(default="", alias="State")
    status: Text = Field(default="", alias="Status")
    created: CreatedTime = Field(
        default=None, alias="Created", validation_alias=AliasChoices("Created", "CreatedAt")
    )
    ports: PortList = Field(default_factory=list, alias="Ports")
    labels: StrMap = Field(default_factory=dict, alias="Labels")
    mounts: MountList = Field(default_factory=list, alias="Mounts")
    command: StringList = Field(default_factory=list, alias="Command")

    @property
    def name(self) -> str:
        return self.names[0] if self.names else ""

    def to_summary(self) -> ContainerSummary:
        return ContainerSummary(
            container_id=self.id,
            name=self.name,
            image=self.image,
            status=parse_status(self.state),
            has_web_ui=self.labels.get(WEBUI_LABEL) == "true",
            icon=self.labels.get(ICON_LABEL, ""),
            uptime=self.status,
            created=self.created,
            ports=self.ports,
            labels=self.labels,
        )


class InspectState(EngineModel):
    status: Text = Field(default="", alias="Status")
    pid: int = Field(default=0, alias="Pid")
    exit_code: int = Field(default=0, alias="ExitCode")
    started_at: Text = Field(default="", alias="StartedAt")
    finished_at: Text = Field(default="", alias="FinishedAt")


class InspectConfig(EngineModel):
    hostname: Text = Field(default="", alias="Hostname")
    user: Text = Field(default="", alias="User")
    env: StringList = Field(default_factory=list, alias="Env")
    cmd: StringList = Field(default_factory=list, alias="Cmd")
    image: Text = Field(default="", alias="Image")
    working_dir: Text = Field(default="", alias="WorkingDir")
    entrypoint: StringList = Field(default_factory=list, alias="Entrypoint")
    labels: StrMap = Field(default_factory=dict, alias="Labels")


class RestartPolicy(EngineModel):
    name: Text = Field(default="", alias="Name")


class InspectHostConfig(EngineModel):
    restart_policy: RestartPolicy = Field(default_factory=RestartPolicy, alias="RestartPolicy")
    port_bindings: PortBindingList = Field(default_factory=list, alias="PortBindings")
    network_mode: Text = Field(default="", alias="NetworkMode")
    memory: int = Field(default=0, alias="Memory")
    nano_cpus: int = Field(default=0, alias="NanoCpus")
    cpu_shares: int = Field(default=0, alias="CpuShares")


class InspectNetworkSettings(EngineModel):
    networks: AnyMap = Field(default_factory=dict, alias="Networks")


class InspectEntry(EngineModel):
    """One element of ``container inspect`` output."""

    id: Text = Field(default="", alias="Id")
    name: Text = Field(default="", alias="Name")
    image_id: Text = Field(default="", alias="Image")
    image_name: Text = Field(default="", alias="ImageName")
    created: CreatedTime = Field(default=None, alias="Created")
    state: InspectState = Field(default_factory=InspectState, alias="State")
    config: InspectConfig = Field(default_factory=InspectConfig, alias="Config")
    host_config: InspectHostConfig = Field(default_factory=InspectHostConfig, alias="HostConfig")
    mounts: MountList = Field(default_factory=list, alias="Mounts")
    network_settings: InspectNetworkSettings = Field(
        default_factory=InspectNetworkSettings, alias="NetworkSettings"
    )

    @property
    def image(self) -> str:
        return self.image_name or self.config.image or self.image_id

    @property
    def container_name(self) -> str:
        return self.name.lstrip("/")

    def to_container(self) -> Container:
        return Container(
            container_id=self.id,
            name=self.container_name,
            image=self.image,
            image_id=self.image_id,
            status=parse_status(self.state.status),
            created=self.created,
            started_at=self.state.started_at,
            finished_at=self.state.finished_at,
            exit_code=self.state.exit_code,
            pid=self.state.pid,
            hostname=self.config.hostname,
            user=self.config.user,
            workdir=self.config.working_dir,
            environment=self.config.env,
            command=self.config.cmd,
            entrypoint=self.config.entrypoint,
            labels=self.config.labels,
            ports=self.host_config.port_bindings,
            mounts=[m.to_mount() for m in self.mounts],
            networks=sorted(self.network_settings.networks),
            network_mode=self.host_config.network_mode,
            restart_policy=self.host_config.restart_policy.name,
            cpu_limit=self.host_config.nano_cpus / 1e9,
            cpu_shares=self.host_config.cpu_shares,
            memory_limit=self.host_config.memory,
        )

    def to_config(self) -> ContainerConfig:
        """Snapshot of the settings needed to recreate this container."""
        labels = {
            key: value
            for key, value in self.config.labels.items()
            if not key.startswith(INTERNAL_LABEL_PREFIXES)
        }
        labels, hints = _split_web_ui(labels)
        environment = {}
        for entry in self.config.env:
            key, _, value = entry.partition("=")
            if key:
                environment[key] = value
        return ContainerConfig(
            container_id=self.id,
            name=self.container_name,
            image=self.image,
            ports=self.host_config.port_bindings,
            volumes=[m.to_mount() for m in self.mounts],
            environment=environment,
            labels=labels,
            restart_policy=self.host_config.restart_policy.name,
            cpu_limit=self.host_config.nano_cpus / 1e9,
            cpu_shares=self.host_config.cpu_shares,
            memory_limit=self.host_config.memory,
            network_mode=self.host_config.network_mode,
            hostname=self.config.hostname,
            user=self.config.user,
            workdir=self.config.working_dir,
            entrypoint=self.config.entrypoint,
            command=self.config.cmd,
            **hints,
        )


class StatsEntry(EngineModel):
    """One element of ``stats --no-stream --format json``."""

    id: Scalar = Field(default="", validation_alias=AliasChoices("id", "ID", "ContainerID"))
    cpu_percent: Scalar = Field(default="", validation_alias=AliasChoices("cpu_percent", "CPUPerc"))
    mem_usage: Scalar = Field(default="", validation_alias=AliasChoices("mem_usage", "MemUsage"))
    mem_percent: Scalar = Field(default="", validation_alias=AliasChoices("mem_percent", "MemPerc"))
    net_io: Scalar = Field(default="", validation_alias=AliasChoices("net_io", "NetIO"))
    block_io: Scalar = Field(default="", validation_alias=AliasChoices("block_io", "BlockIO"))
    pids: Scalar = Field(default="", validation_alias=AliasChoices("pids", "PIDs"))

    def to_stats(self, container_id: str) -> ContainerStats:
        memory_used, memory_limit = parse_io_pair(self.mem_usage)
        network_rx, network_tx = parse_io_pair(self.net_io)
        block_read, block_write = parse_io_pair(self.block_io)
        pids = str(self.pids).strip()
        return ContainerStats(
            container_id=self.id or container_id,
            cpu_percent=parse_percentage(self.cpu_percent),
            memory_used=memory_used,
            memory_limit=memory_limit,
            memory_percent=parse_percentage(self.mem_percent),
            network_rx=network_rx,
            network_tx=network_tx,
            block_read=block_read,
            block_write=block_write,
            pids=int(pids) if pids.isdigit() else 0,
        )


def split_reference(ref: str) -> tuple[str, str]:
    """Split 'registry/repo:tag' into ('registry/repo', 'tag')."""
    ref = ref.split("@", 1)[0]
    repo, sep, tag = ref.rpartition(":")
    if sep and "/" not in tag:
        return repo, tag
    return ref, ""


class ImageListEntry(EngineModel):
    """One element of ``images --format json``."""

    id: Text = Field(default="", validation_alias=AliasChoices("Id", "ID", "id"))
    names: NameList = Field(default_factory=list, validation_alias=AliasChoices("Names", "RepoTags"))
    repository: Text = Field(default="", alias="Repository")
    tag: Text = Field(default="", alias="Tag")
    size: ByteCount = Field(default=0, alias="Size")
    created: CreatedTime = Field(default=None, validation_alias=AliasChoices("Created", "CreatedAt"))
    containers: int = Field(default=0, alias="Containers")

    def to_image(self) -> Image:
        repository, tag = self.repository, self.tag
        if not repository and self.names:
            repository, tag = split_reference(self.names[0])
        return Image(
            image_id=self.id,
            repository=repository or "<none>",
            tag=tag or "<none>",
            size=self.size,
            created=self.created,
            containers=self.containers,
        )


class ImageInspectConfig(EngineModel):
    exposed_ports: AnyMap = Field(default_factory=dict, alias="ExposedPorts")
    env: StringList = Field(default_factory=list, alias="Env")
    volumes: AnyMap = Field(default_factory=dict, alias="Volumes")
    labels: StrMap = Field(default_factory=dict, alias="Labels")
    working_dir: Text = Field(default="", alias="WorkingDir")
    user: Text = Field(default="", alias="User")
    entrypoint: StringList = Field(default_factory=list, alias="Entrypoint")
    cmd: StringList = Field(default_factory=list, alias="Cmd")


class ImageInspectEntry(EngineModel):
    """One element of ``image inspect`` output."""

    id: Text = Field(default="", alias="Id")
    digest: Text = Field(default="", alias="Digest")
    repo_digests: StringList = Field(default_factory=list, alias="RepoDigests")
    config: ImageInspectConfig = Field(default_factory=ImageInspectConfig, alias="Config")

    def to_image_config(self, ref: str) -> ImageConfig:
        ports = []
        for spec in self.config.exposed_ports:
            port, _, protocol = spec.partition("/")
            if port.isdigit():
                ports.append(ImagePort(port=int(port), protocol=protocol or "tcp"))
        environment = []
        for entry in self.config.env:
            key, sep, value = entry.partition("=")
            environment.append(ImageEnvVar(key=key, value=value, has_value=bool(sep)))
        return ImageConfig(
            image=ref,
            exposed_ports=ports,
            environment=environment,
            volumes=list(self.config.volumes),
            labels=self.config.labels,
            working_dir=self.config.working_dir,
            user=self.config.user,
            entrypoint=self.config.entrypoint,
            cmd=self.config.cmd,
        )


class VolumeEntry(EngineModel):
    """One element of ``volume ls --format json``."""

    name: Text = Field(default="", alias="Name")
    driver: Text = Field(default="local", alias="Driver")
    mountpoint: Text = Field(default="", alias="Mountpoint")
    created_at: CreatedTime = Field(default=None, alias="CreatedAt")
    labels: StrMap = Field(default_factory=dict, alias="Labels")
    scope: Text = Field(default="", alias="Scope")
    options: StrMap = Field(default_factory=dict, alias="Options")

    def to_volume(self) -> Volume:
        return Volume(
            name=self.name,
            driver=self.driver or "local",
            mount_point=self.mountpoint,
            created_at=self.created_at,
            labels=self.labels,
            scope=self.scope,
            options=self.options,
        )


class SubnetEntry(EngineModel):
    subnet: Text = Field(default="", validation_alias=AliasChoices("subnet", "Subnet"))
    gateway: Text = Field(default="", validation_alias=AliasChoices("gateway", "Gateway"))


def _subnets(value: Any) -> Any:
    """Subnets arrive as a list or under Docker-style ``IPAM.Config``."""
    if value is None:
        return []
    if isinstance(value, dict):
        return value.get("Config") or []
    return value


class NetworkEntry(EngineModel):
    """One element of ``network ls --format json``."""

    id: Text = Field(default="", validation_alias=AliasChoices("id", "Id", "ID"))
    name: Text = Field(default="", validation_alias=AliasChoices("name", "Name"))
    driver: Text = Field(default="", validation_alias=AliasChoices("driver", "Driver"))
    created: CreatedTime = Field(default=None, validation_alias=AliasChoices("created", "Created"))
    subnets: Annotated[list[SubnetEntry], BeforeValidator(_subnets)] = Field(
        default_factory=list, validation_alias=AliasChoices("subnets", "IPAM")
    )
    internal: bool = Field(default=False, validation_alias=AliasChoices("internal", "Internal"))
    ipv6: bool = Field(
        default=False, validation_alias=AliasChoices("ipv6_enabled", "EnableIPv6")
    )
    labels: StrMap = Field(default_factory=dict, validation_alias=AliasChoices("labels", "Labels"))
    options: StrMap = Field(default_factory=dict, validation_alias=AliasChoices("options", "Options"))

    def to_network(self) -> Network:
        first = self.subnets[0] if self.subnets else SubnetEntry()
        return Network(
            network_id=self.id,
            name=self.name,
            driver=self.driver,
            subnet=first.subnet,
            gateway=first.gateway,
            internal=self.internal,
            ipv6=self.ipv6,
            labels=self.labels,
            options=self.options,
            created_at=self.created,
        )


def decode_list(model: type[M], data: Any) -> list[M]:
    """Validate a JSON array of engine objects, skipping non-object elements.

    Raises:
        ParseError: An element could not be decoded
    """
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ParseError(f"Expected a JSON array for {model.__name__}, got {type(data).__name__}")
    try:
        return [model.model_validate(item) for item in data if isinstance(item, dict)]
    except ValidationError as e:
        raise ParseError(f"Unexpected {model.__name__} shape: {e}") from e
