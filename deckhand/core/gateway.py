"""Runtime command gateway: engine CLI execution with rootless delegation.

Every engine operation is an argument vector. The gateway turns it into a
process invocation (wrapped in ``sudo -u <user>`` when a root process manages
another user's rootless engine), and either buffers the output or hands back a
live process whose pipes are consumed by the streaming layer.
"""

import asyncio
import json
import time
from typing import Any

import structlog

from ..constants import STREAM_READ_LIMIT
from .exceptions import (
    EngineInvocationError,
    EngineRejectedError,
    EngineTimeoutError,
    ParseError,
)
from .identity import TargetIdentity, is_running_as_root
from .settings import EngineSettings

logger = structlog.get_logger()

KILL_TIMEOUT = 5  # Time to wait after SIGTERM before SIGKILL
ENV_FLAGS = {"-e", "--env"}


def canonicalize_image(ref: str, registry: str = "docker.io") -> str:
    """Qualify an image reference with a registry.

    ``nginx`` and ``library/nginx`` gain the default registry; references whose
    first path segment looks like a registry host (contains ``.`` or ``:``)
    are returned unchanged. Applying it twice is the same as applying it once.
    """
    first, sep, _ = ref.partition("/")
    if not sep or ("." not in first and ":" not in first):
        return f"{registry}/{ref}"
    return ref


def redact_command(cmd: list[str]) -> str:
    """Render a command line for logging with environment values hidden."""
    rendered: list[str] = []
    redact_next = False
    for arg in cmd:
        if redact_next:
            key = arg.split("=", 1)[0]
            rendered.append(f"{key}=***" if "=" in arg else arg)
            redact_next = False
            continue
        if arg in ENV_FLAGS:
            redact_next = True
        elif arg.startswith("--env="):
            key = arg[len("--env=") :].split("=", 1)[0]
            arg = f"--env={key}=***"
        rendered.append(arg)
    return " ".join(rendered)


class SubprocessResult:
    """Result of a buffered subprocess execution."""

    def __init__(self, returncode: int, stdout: str, stderr: str, cmd: list[str]):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.cmd = cmd

    @property
    def success(self) -> bool:
        """Check if the command succeeded."""
        return self.returncode == 0


class EngineGateway:
    """Executes engine commands for one immutable target identity.

    Callers needing a different identity construct a second gateway.
    """

    def __init__(self, identity: TargetIdentity | None = None, settings: EngineSettings | None = None):
        self.identity = identity or TargetIdentity()
        self.settings = settings or EngineSettings()
        self._active_processes: set[asyncio.subprocess.Process] = set()
        self._cleanup_lock = asyncio.Lock()
        self._watchers: set[asyncio.Task] = set()

    @property
    def mode(self) -> str:
        return self.identity.mode

    @property
    def registry(self) -> str:
        return self.settings.default_registry

    def canonicalize(self, ref: str) -> str:
        return canonicalize_image(ref, self.registry)

    def build_command(self, args: list[str]) -> list[str]:
        """Build the full engine command line for an argument vector."""
        return self._delegate([self.settings.engine_binary, *_validate_args(args)])

    def _delegate(self, cmd: list[str]) -> list[str]:
        if self.identity.user and is_running_as_root():
            return ["sudo", "-u", self.identity.user, *cmd]
        return cmd

    async def run(
        self,
        args: list[str],
        *,
        timeout: float | None = None,
        input: str | None = None,
        merge_stderr: bool = False,
    ) -> str:
        """Run an engine command and return its stdout.

        With ``merge_stderr`` both pipes are captured into the returned text.

        Raises:
            EngineRejectedError: Engine exited non-zero
            EngineInvocationError: Engine could not be started
            EngineTimeoutError: Engine did not finish within the timeout
        """
        result = await self._execute(
            self.build_command(args), timeout=timeout, input=input, merge_stderr=merge_stderr
        )
        return result.stdout

    async def run_json(self, args: list[str], *, timeout: float | None = None) -> Any:
        """Run an engine command and decode its JSON output."""
        output = await self.run(args, timeout=timeout)
        if not output.strip():
            return []
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise ParseError(
                f"Expected JSON from '{' '.join(args[:2])}': {e} (output: {output[:200]!r})"
            ) from e

    async def run_external(
        self,
        cmd: list[str],
        *,
        cwd: str | None = None,
        timeout: float | None = None,
        delegate: bool = False,
    ) -> str:
        """Run a helper tool (compose, rsync, cp) with the same error policy."""
        cmd = _validate_args(cmd)
        if delegate:
            cmd = self._delegate(cmd)
        result = await self._execute(cmd, timeout=timeout, cwd=cwd)
        return result.stdout

    async def spawn(self, args: list[str], *, stdin: bool = False) -> asyncio.subprocess.Process:
        """Start an engine command and return the live process."""
        return await self._spawn(self.build_command(args), stdin=stdin)

    async def spawn_external(
        self, cmd: list[str], *, cwd: str | None = None, delegate: bool = False
    ) -> asyncio.subprocess.Process:
        """Start a helper tool and return the live process."""
        cmd = _validate_args(cmd)
        if delegate:
            cmd = self._delegate(cmd)
        return await self._spawn(cmd, cwd=cwd)

    async def _spawn(
        self, cmd: list[str], *, stdin: bool = False, cwd: str | None = None
    ) -> asyncio.subprocess.Process:
        self._trace("Spawning engine stream", cmd)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                limit=STREAM_READ_LIMIT,
            )
        except OSError as e:
            raise EngineInvocationError(f"Failed to start {cmd[0]}: {e}") from e

        async with self._cleanup_lock:
            self._active_processes.add(process)
        watcher = asyncio.get_running_loop().create_task(self._forget_when_done(process))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)
        return process

    async def _forget_when_done(self, process: asyncio.subprocess.Process) -> None:
        await process.wait()
        async with self._cleanup_lock:
            self._active_processes.discard(process)

    async def _execute(
        self,
        cmd: list[str],
        *,
        timeout: float | None = None,
        input: str | None = None,
        cwd: str | None = None,
        merge_stderr: bool = False,
    ) -> SubprocessResult:
        if timeout is None:
            timeout = self.settings.cli_timeout

        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT if merge_stderr else asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except OSError as e:
            raise EngineInvocationError(f"Failed to start {cmd[0]}: {e}") from e

        async with self._cleanup_lock:
            self._active_processes.add(process)

        try:
            try:
                stdout_bytes, stderr_bytes = await asyncio.wait_for(
                    process.communicate(input=input.encode() if input is not None else None),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Command timed out, terminating process",
                    command=redact_command(cmd),
                    timeout=timeout,
                    pid=process.pid,
                )
                await _terminate(process)
                raise EngineTimeoutError(
                    f"Command timed out after {timeout} seconds: {cmd[0]}"
                ) from None
        finally:
            async with self._cleanup_lock:
                self._active_processes.discard(process)
            if process.returncode is None:
                await _terminate(process)

        stdout = stdout_bytes.decode(errors="replace") if stdout_bytes else ""
        stderr = stderr_bytes.decode(errors="replace") if stderr_bytes else ""
        duration = time.monotonic() - start

        if process.returncode != 0:
            self._trace(
                "Engine command failed",
                cmd,
                duration=round(duration, 3),
                returncode=process.returncode,
                stderr=stderr.strip()[:500],
            )
            raise EngineRejectedError(stderr or stdout, process.returncode, cmd)

        self._trace(
            "Engine command completed",
            cmd,
            duration=round(duration, 3),
            output_bytes=len(stdout_bytes or b""),
        )
        return SubprocessResult(process.returncode or 0, stdout, stderr, cmd)

    def _trace(self, event: str, cmd: list[str], **fields: Any) -> None:
        if self.settings.engine_debug:
            logger.debug(event, command=redact_command(cmd), **fields)

    async def check_engine(self) -> str:
        """Return the engine client version."""
        data = await self.run_json(["version", "--format", "json"])
        if not isinstance(data, dict):
            raise ParseError("Unexpected engine version output")
        return str((data.get("Client") or {}).get("Version", ""))

    @property
    def active_processes(self) -> int:
        return len(self._active_processes)

    async def cleanup_all(self) -> None:
        """Terminate every process this gateway still tracks."""
        async with self._cleanup_lock:
            processes = list(self._active_processes)
            self._active_processes.clear()

        if processes:
            logger.info("Cleaning up active processes", count=len(processes))
        await asyncio.gather(*(_terminate(p) for p in processes), return_exceptions=True)


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Terminate gracefully, then kill, then reap."""
    if process.returncode is not None:
        return
    try:
        process.terminate()
        await asyncio.wait_for(process.wait(), timeout=KILL_TIMEOUT)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
    except ProcessLookupError:
        # Process already terminated
        pass


def _validate_args(args: list[str]) -> list[str]:
    if not args:
        raise ValueError("Empty command")
    for arg in args:
        if not isinstance(arg, str):
            raise TypeError(f"Command arguments must be strings, got {type(arg).__name__}")
        if "\x00" in arg:
            raise ValueError("Command arguments must not contain NUL bytes")
    return list(args)
