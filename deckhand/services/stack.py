"""
Stack Orchestrator

Compose project lifecycle through the compose tool, plus a read-only view of
a project's containers derived from their compose labels.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import aclosing
from pathlib import Path

import structlog

from ..constants import COMPOSE_FILE_NAME, COMPOSE_PROJECT_LABEL, COMPOSE_SERVICE_LABEL
from ..core.exceptions import EngineInvocationError, EngineRejectedError, PreconditionError
from ..core.gateway import EngineGateway
from ..models.engine import PsEntry, decode_list
from ..models.enums import ContainerStatus, StackAction, StackStatus, parse_status
from ..models.stack import StackContainer
from .streaming import stream_checked


class StackService:
    """Service for compose stack operations."""

    def __init__(self, gateway: EngineGateway):
        self.gateway = gateway
        self.logger = structlog.get_logger().bind(component="stack_service")

    def build_command(self, project_dir: str, project_name: str, action: list[str]) -> list[str]:
        """Compose command line for one action on a project directory."""
        cmd = [self.gateway.settings.compose_binary, "-f", str(Path(project_dir) / COMPOSE_FILE_NAME)]
        if project_name:
            cmd.extend(["-p", project_name])
        return [*cmd, *action]

    def _action_args(self, action: StackAction, remove_volumes: bool = False) -> list[str]:
        if action == "up":
            return ["up", "-d"]
        if action == "down" and remove_volumes:
            return ["down", "-v"]
        return [action]

    def _check_project(self, project_dir: str) -> None:
        if not (Path(project_dir) / COMPOSE_FILE_NAME).is_file():
            raise PreconditionError(f"No {COMPOSE_FILE_NAME} in {project_dir}")

    async def _run(
        self, project_dir: str, project_name: str, action: StackAction, remove_volumes: bool = False
    ) -> str:
        self._check_project(project_dir)
        cmd = self.build_command(project_dir, project_name, self._action_args(action, remove_volumes))
        self.logger.info("Running compose action", action=action, project=project_name, project_dir=project_dir)
        output = await self.gateway.run_external(
            cmd,
            cwd=project_dir,
            timeout=self.gateway.settings.compose_timeout,
            delegate=True,
        )
        self.logger.info("Compose action completed", action=action, project=project_name)
        return output

    async def _stream(
        self,
        project_dir: str,
        project_name: str,
        action: StackAction,
        remove_volumes: bool = False,
        stop: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        self._check_project(project_dir)
        cmd = self.build_command(project_dir, project_name, self._action_args(action, remove_volumes))
        process = await self.gateway.spawn_external(cmd, cwd=project_dir, delegate=True)
        self.logger.info("Streaming compose action", action=action, project=project_name, pid=process.pid)
        async with aclosing(stream_checked(self.gateway, process, cmd, stop=stop)) as lines:
            async for line in lines:
                yield line.text

    async def up(self, project_dir: str, project_name: str = "") -> str:
        return await self._run(project_dir, project_name, "up")

    async def down(self, project_dir: str, project_name: str = "", remove_volumes: bool = False) -> str:
        return await self._run(project_dir, project_name, "down", remove_volumes)

    async def start(self, project_dir: str, project_name: str = "") -> str:
        return await self._run(project_dir, project_name, "start")

    async def stop(self, project_dir: str, project_name: str = "") -> str:
        return await self._run(project_dir, project_name, "stop")

    async def restart(self, project_dir: str, project_name: str = "") -> str:
        return await self._run(project_dir, project_name, "restart")

    async def pull(self, project_dir: str, project_name: str = "") -> str:
        return await self._run(project_dir, project_name, "pull")

    def up_stream(
        self, project_dir: str, project_name: str = "", stop: asyncio.Event | None = None
    ) -> AsyncIterator[str]:
        return self._stream(project_dir, project_name, "up", stop=stop)

    def down_stream(
        self,
        project_dir: str,
        project_name: str = "",
        remove_volumes: bool = False,
        stop: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        return self._stream(project_dir, project_name, "down", remove_volumes, stop=stop)

    def pull_stream(
        self, project_dir: str, project_name: str = "", stop: asyncio.Event | None = None
    ) -> AsyncIterator[str]:
        return self._stream(project_dir, project_name, "pull", stop=stop)

    async def list_stack_containers(self, project_name: str) -> list[StackContainer]:
        """Containers labelled as members of a compose project."""
        data = await self.gateway.run_json(
            [
                "ps",
                "--all",
                "--format",
                "json",
                "--filter",
                f"label={COMPOSE_PROJECT_LABEL}={project_name}",
            ]
        )
        return [
            StackContainer(
                container_id=entry.id,
                name=entry.name,
                service=entry.labels.get(COMPOSE_SERVICE_LABEL, ""),
                status=parse_status(entry.state),
                image=entry.image,
                ports=entry.ports,
            )
            for entry in decode_list(PsEntry, data)
            if entry.labels.get(COMPOSE_PROJECT_LABEL) == project_name
        ]

    async def stack_status(self, project_name: str) -> StackStatus:
        """Aggregate state: all members running, some running, or none."""
        containers = await self.list_stack_containers(project_name)
        running = sum(1 for c in containers if c.status == ContainerStatus.RUNNING)
        if containers and running == len(containers):
            return StackStatus.ACTIVE
        if running:
            return StackStatus.PARTIAL
        return StackStatus.STOPPED

    async def check_compose(self) -> bool:
        """Report whether the compose tool can be executed."""
        try:
            await self.gateway.run_external([self.gateway.settings.compose_binary, "version"])
        except (EngineInvocationError, EngineRejectedError) as e:
            self.logger.info("Compose tool unavailable", error=str(e))
            return False
        return True
