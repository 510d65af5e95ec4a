"""Shared pytest fixtures for deckhand tests."""

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from deckhand.core.gateway import EngineGateway, SubprocessResult
from deckhand.core.identity import TargetIdentity
from deckhand.core.settings import EngineSettings


class FakeGateway(EngineGateway):
    """Gateway that records command lines and replays canned results.

    Buffered commands never start a process. Streaming commands run a short
    ``sh -c`` script so the streaming layer sees a real process.
    """

    def __init__(self, settings: EngineSettings):
        super().__init__(TargetIdentity(), settings)
        self.calls: list[list[str]] = []
        self._responses: list[tuple[tuple[str, ...], Any]] = []
        self._scripts: list[tuple[tuple[str, ...], str]] = []

    def respond(self, *prefix: str, stdout: Any = "", error: Exception | None = None) -> None:
        """Register output (or an exception) for commands starting with ``prefix``.

        Later registrations take precedence. Non-string stdout is JSON-encoded.
        """
        if not isinstance(stdout, str):
            stdout = json.dumps(stdout)
        self._responses.insert(0, (prefix, error if error is not None else stdout))

    def script(self, *prefix: str, script: str) -> None:
        """Register the shell script a spawned command with ``prefix`` runs."""
        self._scripts.insert(0, (prefix, script))

    def _args(self, cmd: list[str]) -> list[str]:
        if cmd and cmd[0] == self.settings.engine_binary:
            return cmd[1:]
        return cmd

    def calls_starting(self, *prefix: str) -> list[list[str]]:
        return [self._args(c) for c in self.calls if tuple(self._args(c)[: len(prefix)]) == prefix]

    async def _execute(self, cmd, *, timeout=None, input=None, cwd=None, merge_stderr=False):
        self.calls.append(cmd)
        args = self._args(cmd)
        for prefix, result in self._responses:
            if tuple(args[: len(prefix)]) == prefix:
                if isinstance(result, Exception):
                    raise result
                return SubprocessResult(0, result, "", cmd)
        return SubprocessResult(0, "", "", cmd)

    async def _spawn(self, cmd, *, stdin=False, cwd=None):
        self.calls.append(cmd)
        args = self._args(cmd)
        script = "true"
        for prefix, candidate in self._scripts:
            if tuple(args[: len(prefix)]) == prefix:
                script = candidate
                break
        return await asyncio.create_subprocess_exec(
            "sh",
            "-c",
            script,
            stdin=asyncio.subprocess.PIPE if stdin else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )


@pytest.fixture
def settings(tmp_path: Path) -> EngineSettings:
    """Settings isolated from the host environment."""
    return EngineSettings(
        _env_file=None,
        backup_root=tmp_path / "backups",
        stream_shutdown_timeout=2.0,
        image_exists_ttl=30.0,
    )


@pytest.fixture
def fake_gateway(settings: EngineSettings) -> FakeGateway:
    return FakeGateway(settings)


@pytest.fixture
def ps_output() -> list[dict[str, Any]]:
    """Two containers as reported by ``ps --all --format json``."""
    return [
        {
            "Id": "a1b2c3d4e5f6",
            "Names": ["web"],
            "Image": "docker.io/library/nginx:latest",
            "State": "running",
            "Status": "Up 2 hours",
            "Created": 1700000000,
            "Ports": [
                {"host_ip": "", "container_port": 80, "host_port": 8080, "range": 1, "protocol": "tcp"}
            ],
            "Labels": {
                "com.docker.compose.project": "site",
                "com.docker.compose.service": "nginx",
                "deckhand.webui": "true",
                "deckhand.icon": "globe",
            },
            "Mounts": ["/usr/share/nginx/html"],
        },
        {
            "Id": "ffeeddccbbaa",
            "Names": "db",
            "Image": "docker.io/library/postgres:16",
            "State": "exited",
            "Status": "Exited (0) 3 minutes ago",
            "Created": "2024-05-01T10:00:00.123456789Z",
            "Ports": None,
            "Labels": {"com.docker.compose.project": "site", "com.docker.compose.service": "db"},
            "Mounts": None,
        },
    ]


@pytest.fixture
def inspect_output(tmp_path: Path) -> list[dict[str, Any]]:
    """One container as reported by ``container inspect``."""
    data_dir = tmp_path / "data" / "web"
    data_dir.mkdir(parents=True)
    (data_dir / "index.html").write_text("<h1>hello</h1>")
    return [
        {
            "Id": "a1b2c3d4e5f6a1b2c3d4e5f6",
            "Name": "web",
            "Image": "sha256:0123456789",
            "ImageName": "docker.io/library/nginx:latest",
            "Created": "2024-05-01T10:00:00.5Z",
            "State": {"Status": "running", "Pid": 4242, "ExitCode": 0, "StartedAt": "2024-05-01T10:00:01Z"},
            "Config": {
                "Hostname": "web",
                "User": "",
                "Env": ["PATH=/usr/bin", "NGINX_PORT=80", "SECRET=hunter2"],
                "Cmd": ["nginx", "-g", "daemon off;"],
                "Image": "docker.io/library/nginx:latest",
                "WorkingDir": "/",
                "Entrypoint": "/docker-entrypoint.sh",
                "Labels": {
                    "io.podman.annotations.autoremove": "FALSE",
                    "org.opencontainers.image.version": "1.25",
                    "app": "site",
                    "deckhand.webui": "true",
                    "deckhand.webui.port": "8080",
                    "deckhand.icon": "globe",
                },
            },
            "HostConfig": {
                "RestartPolicy": {"Name": "always"},
                "PortBindings": {"80/tcp": [{"HostIp": "", "HostPort": "8080"}]},
                "NetworkMode": "bridge",
                "Memory": 268435456,
                "NanoCpus": 1500000000,
                "CpuShares": 0,
            },
            "Mounts": [
                {"Type": "bind", "Source": str(data_dir), "Destination": "/usr/share/nginx/html", "RW": True},
                {
                    "Type": "volume",
                    "Name": "web-cache",
                    "Source": "/var/lib/containers/storage/volumes/web-cache/_data",
                    "Destination": "/var/cache/nginx",
                    "RW": False,
                },
            ],
            "NetworkSettings": {"Networks": {"podman": {}}},
        }
    ]
