"""
Container Lifecycle Service

Container operations expressed as engine argument vectors, with engine JSON
decoded into typed models.
"""

from __future__ import annotations

import json

import structlog

from ..core.exceptions import ContainerNotFoundError, EngineRejectedError, ParseError
from ..core.gateway import EngineGateway
from ..models.container import (
    ICON_LABEL,
    WEBUI_LABEL,
    WEBUI_PATH_LABEL,
    WEBUI_PORT_LABEL,
    Container,
    ContainerConfig,
    ContainerSpec,
    ContainerStats,
    ContainerSummary,
)
from ..models.engine import InspectEntry, PsEntry, StatsEntry, decode_list

NOT_FOUND_MARKERS = ("no such container", "no container with name or id")


def build_create_args(spec: ContainerSpec, image: str) -> list[str]:
    """Translate a container spec into ``create`` arguments.

    Options are only emitted when set; ``image`` must already be canonical.
    """
    args = ["create", "--name", spec.name]

    for port in spec.ports:
        args.extend(["-p", port.to_arg()])
    for volume in spec.volumes:
        args.extend(["-v", volume.to_arg()])
    for key, value in spec.environment.items():
        args.extend(["-e", f"{key}={value}"])

    labels = dict(spec.labels)
    if spec.has_web_ui:
        labels[WEBUI_LABEL] = "true"
        if spec.web_ui_port:
            labels[WEBUI_PORT_LABEL] = str(spec.web_ui_port)
        if spec.web_ui_path:
            labels[WEBUI_PATH_LABEL] = spec.web_ui_path
    if spec.icon:
        labels[ICON_LABEL] = spec.icon
    for key, value in labels.items():
        args.extend(["--label", f"{key}={value}"])

    if spec.restart_policy:
        args.extend(["--restart", spec.restart_policy])
    if spec.cpu_limit > 0:
        args.extend(["--cpus", f"{spec.cpu_limit:.2f}"])
    if spec.cpu_shares > 0:
        args.extend(["--cpu-shares", str(spec.cpu_shares)])
    if spec.memory_limit > 0:
        args.extend(["--memory", str(spec.memory_limit)])
    if spec.network_mode:
        args.extend(["--network", spec.network_mode])
    if spec.hostname:
        args.extend(["--hostname", spec.hostname])
    if spec.user:
        args.extend(["--user", spec.user])
    if spec.workdir:
        args.extend(["--workdir", spec.workdir])
    if spec.entrypoint:
        # Multi-element entrypoints are passed in the engine's JSON array form
        entrypoint = spec.entrypoint[0] if len(spec.entrypoint) == 1 else json.dumps(spec.entrypoint)
        args.extend(["--entrypoint", entrypoint])

    args.append(image)
    args.extend(spec.command)
    return args


class ContainerService:
    """Service for container lifecycle operations."""

    def __init__(self, gateway: EngineGateway):
        self.gateway = gateway
        self.logger = structlog.get_logger().bind(component="container_service")

    async def list_entries(self) -> list[PsEntry]:
        """Raw decoded ``ps`` entries for every container, running or not."""
        data = await self.gateway.run_json(["ps", "--all", "--format", "json"])
        return decode_list(PsEntry, data)

    async def list(self) -> list[ContainerSummary]:
        """List all containers."""
        return [entry.to_summary() for entry in await self.list_entries()]

    async def exists(self, name: str) -> bool:
        """Check whether a container with exactly this name exists."""
        output = await self.gateway.run(
            ["ps", "--all", "--filter", f"name=^{name}$", "--format", "{{.Names}}"]
        )
        return any(line.strip() == name for line in output.splitlines())

    async def create(self, spec: ContainerSpec) -> str:
        """Create a container and return its id."""
        image = self.gateway.canonicalize(spec.image)
        output = await self.gateway.run(build_create_args(spec, image))
        lines = output.strip().splitlines()
        if not lines:
            raise ParseError(f"Engine returned no id for new container '{spec.name}'")
        container_id = lines[-1].strip()
        self.logger.info("Container created", name=spec.name, image=image, container_id=container_id[:12])
        return container_id

    async def start(self, container_id: str) -> None:
        await self.gateway.run(["start", container_id])
        self.logger.info("Container started", container_id=container_id)

    async def stop(self, container_id: str, timeout: int = 10) -> None:
        await self.gateway.run(
            ["stop", "--time", str(timeout), container_id],
            timeout=timeout + self.gateway.settings.cli_timeout,
        )
        self.logger.info("Container stopped", container_id=container_id)

    async def restart(self, container_id: str, timeout: int = 10) -> None:
        await self.gateway.run(
            ["restart", "--time", str(timeout), container_id],
            timeout=timeout + self.gateway.settings.cli_timeout,
        )
        self.logger.info("Container restarted", container_id=container_id)

    async def pause(self, container_id: str) -> None:
        await self.gateway.run(["pause", container_id])

    async def unpause(self, container_id: str) -> None:
        await self.gateway.run(["unpause", container_id])

    async def remove(self, container_id: str, force: bool = False) -> None:
        args = ["rm"]
        if force:
            args.append("--force")
        await self.gateway.run([*args, container_id])
        self.logger.info("Container removed", container_id=container_id, force=force)

    async def rename(self, container_id: str, new_name: str) -> None:
        await self.gateway.run(["rename", container_id, new_name])
        self.logger.info("Container renamed", container_id=container_id, new_name=new_name)

    async def _inspect_entry(self, container_id: str) -> InspectEntry:
        try:
            data = await self.gateway.run_json(
                ["container", "inspect", "--format", "json", container_id]
            )
        except EngineRejectedError as e:
            if any(marker in e.stderr.lower() for marker in NOT_FOUND_MARKERS):
                raise ContainerNotFoundError(container_id) from e
            raise
        entries = decode_list(InspectEntry, data)
        if not entries:
            raise ContainerNotFoundError(container_id)
        return entries[0]

    async def inspect(self, container_id: str) -> Container:
        """Detailed state of one container."""
        return (await self._inspect_entry(container_id)).to_container()

    async def get_config(self, container_id: str) -> ContainerConfig:
        """Snapshot of the configuration needed to recreate a container."""
        return (await self._inspect_entry(container_id)).to_config()

    async def stats(self, container_id: str) -> ContainerStats:
        """Point-in-time resource usage of one container."""
        data = await self.gateway.run_json(
            ["stats", "--no-stream", "--format", "json", container_id]
        )
        entries = decode_list(StatsEntry, data)
        if not entries:
            return ContainerStats(container_id=container_id)
        return entries[0].to_stats(container_id)

    async def size(self, container_id: str) -> tuple[int, int]:
        """Return (writable layer size, root filesystem size) in bytes.

        Size reporting is optional on some storage drivers, so failures give (0, 0).
        """
        try:
            data = await self.gateway.run_json(
                ["container", "inspect", "--size", "--format", "json", container_id]
            )
        except (EngineRejectedError, ParseError) as e:
            self.logger.warning("Container size unavailable", container_id=container_id, error=str(e))
            return 0, 0
        if not data or not isinstance(data, list) or not isinstance(data[0], dict):
            return 0, 0
        return int(data[0].get("SizeRw") or 0), int(data[0].get("SizeRootFs") or 0)

    async def get_logs(self, container_id: str, tail: int = 100, timestamps: bool = False) -> list[str]:
        """Recent log lines from both output streams."""
        args = ["logs", "--tail", str(tail)]
        if timestamps:
            args.append("--timestamps")
        output = await self.gateway.run([*args, container_id], merge_stderr=True)
        return output.splitlines()

    async def exec(self, container_id: str, command: list[str]) -> str:
        """Run one command inside a running container and return its output."""
        return await self.gateway.run(["exec", container_id, *command], merge_stderr=True)
