"""
Streaming Service

Live container logs, periodic stats, pull progress and interactive exec
sessions. Every stream is bounded by the caller's stop event or by closing
the iterator; the engine process never outlives it.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator
from contextlib import aclosing

import structlog

from ..constants import INTERACTIVE_SHELL
from ..core.exceptions import EngineInvocationError, EngineRejectedError
from ..core.gateway import EngineGateway
from ..core.streaming import StreamLine, stream_process
from ..models.container import ContainerLog, ContainerStats
from ..utils import parse_log_line
from .container import ContainerService
from .image import ImageService

ERROR_TAIL_LINES = 20  # stderr lines kept for failure messages


async def stream_checked(
    gateway: EngineGateway,
    process: asyncio.subprocess.Process,
    command: list[str],
    *,
    stop: asyncio.Event | None = None,
    skip_empty: bool = False,
) -> AsyncIterator[StreamLine]:
    """Stream a process's output, raising if it exits non-zero.

    A run ended by ``stop`` is a cancellation, not a failure, and does not raise.

    Raises:
        EngineRejectedError: Process exited non-zero on its own
    """
    stderr_tail: deque[str] = deque(maxlen=ERROR_TAIL_LINES)
    async with aclosing(
        stream_process(
            process,
            stop=stop,
            queue_size=gateway.settings.stream_queue_size,
            shutdown_timeout=gateway.settings.stream_shutdown_timeout,
            skip_empty=skip_empty,
        )
    ) as lines:
        async for line in lines:
            if line.stream == "stderr":
                stderr_tail.append(line.text)
            yield line

    if stop is not None and stop.is_set():
        return
    if process.returncode:
        raise EngineRejectedError("\n".join(stderr_tail), process.returncode, command)


class ExecSession:
    """Interactive shell inside a container.

    Input goes through ``write``; output is read with ``lines()``. Use as an
    async context manager, or call ``close()`` when done.
    """

    def __init__(self, gateway: EngineGateway, process: asyncio.subprocess.Process, container_id: str):
        self.gateway = gateway
        self.process = process
        self.container_id = container_id

    async def write(self, data: str | bytes) -> None:
        if self.process.stdin is None or self.process.stdin.is_closing():
            raise EngineInvocationError("Exec session input is closed")
        if isinstance(data, str):
            data = data.encode()
        try:
            self.process.stdin.write(data)
            await self.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise EngineInvocationError(f"Exec session input failed: {e}") from e

    def lines(self, stop: asyncio.Event | None = None) -> AsyncIterator[StreamLine]:
        return stream_process(
            self.process,
            stop=stop,
            queue_size=self.gateway.settings.stream_queue_size,
            shutdown_timeout=self.gateway.settings.stream_shutdown_timeout,
        )

    @property
    def closed(self) -> bool:
        return self.process.returncode is not None

    async def close(self) -> None:
        """Close input, give the shell a moment to exit, then kill it."""
        if self.process.stdin is not None and not self.process.stdin.is_closing():
            self.process.stdin.close()
        try:
            await asyncio.wait_for(
                self.process.wait(), timeout=self.gateway.settings.stream_shutdown_timeout
            )
        except asyncio.TimeoutError:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass
            await self.process.wait()

    async def __aenter__(self) -> ExecSession:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class StreamingService:
    """Service for long-running engine output streams."""

    def __init__(
        self,
        gateway: EngineGateway,
        containers: ContainerService | None = None,
        images: ImageService | None = None,
    ):
        self.gateway = gateway
        self.containers = containers or ContainerService(gateway)
        self.images = images or ImageService(gateway)
        self.logger = structlog.get_logger().bind(component="streaming_service")

    async def stream_logs(
        self,
        container_id: str,
        tail: int = 100,
        stop: asyncio.Event | None = None,
    ) -> AsyncIterator[ContainerLog]:
        """Follow a container's logs until stopped or the container exits."""
        args = ["logs", "--follow", "--timestamps", "--tail", str(tail), container_id]
        process = await self.gateway.spawn(args)
        self.logger.debug("Log stream started", container_id=container_id, pid=process.pid)
        async with aclosing(
            stream_process(
                process,
                stop=stop,
                queue_size=self.gateway.settings.stream_queue_size,
                shutdown_timeout=self.gateway.settings.stream_shutdown_timeout,
            )
        ) as lines:
            async for line in lines:
                timestamp, message = parse_log_line(line.text)
                yield ContainerLog(timestamp=timestamp, stream=line.stream, message=message)
        self.logger.debug("Log stream ended", container_id=container_id)

    async def stream_stats(
        self,
        container_id: str,
        interval: float = 2.0,
        stop: asyncio.Event | None = None,
    ) -> AsyncIterator[ContainerStats]:
        """Yield stats snapshots every ``interval`` seconds until stopped."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            yield await self.containers.stats(container_id)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def pull_with_progress(
        self, ref: str, stop: asyncio.Event | None = None
    ) -> AsyncIterator[str]:
        """Pull an image, yielding progress lines from both output streams.

        Raises:
            EngineRejectedError: Pull exited non-zero
        """
        canonical = self.gateway.canonicalize(ref)
        args = ["pull", canonical]
        process = await self.gateway.spawn(args)
        self.logger.info("Pulling image", image=canonical)
        try:
            async with aclosing(
                stream_checked(self.gateway, process, args, stop=stop, skip_empty=True)
            ) as lines:
                async for line in lines:
                    yield line.text
        finally:
            self.images.invalidate(canonical)

    async def exec_interactive(self, container_id: str) -> ExecSession:
        """Open an interactive shell (bash when available, sh otherwise)."""
        process = await self.gateway.spawn(["exec", "-i", container_id, *INTERACTIVE_SHELL], stdin=True)
        self.logger.info("Exec session opened", container_id=container_id, pid=process.pid)
        return ExecSession(self.gateway, process, container_id)
