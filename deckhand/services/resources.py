"""
Volume and Network Services
"""

from __future__ import annotations

import structlog

from ..core.gateway import EngineGateway
from ..models.engine import NetworkEntry, VolumeEntry, decode_list
from ..models.resources import Network, NetworkSpec, Volume, VolumeSpec


def _key_value_args(flag: str, values: dict[str, str]) -> list[str]:
    args: list[str] = []
    for key, value in values.items():
        args.extend([flag, f"{key}={value}"])
    return args


class VolumeService:
    """Service for named volume operations."""

    def __init__(self, gateway: EngineGateway):
        self.gateway = gateway
        self.logger = structlog.get_logger().bind(component="volume_service")

    async def list(self) -> list[Volume]:
        data = await self.gateway.run_json(["volume", "ls", "--format", "json"])
        return [entry.to_volume() for entry in decode_list(VolumeEntry, data)]

    async def create(self, spec: VolumeSpec) -> str:
        """Create a volume and return its name."""
        args = ["volume", "create"]
        if spec.driver:
            args.extend(["--driver", spec.driver])
        args.extend(_key_value_args("--label", spec.labels))
        args.extend(_key_value_args("--opt", spec.options))
        output = await self.gateway.run([*args, spec.name])
        self.logger.info("Volume created", name=spec.name)
        return output.strip() or spec.name

    async def remove(self, name: str, force: bool = False) -> None:
        args = ["volume", "rm"]
        if force:
            args.append("--force")
        await self.gateway.run([*args, name])
        self.logger.info("Volume removed", name=name, force=force)


class NetworkService:
    """Service for network operations."""

    def __init__(self, gateway: EngineGateway):
        self.gateway = gateway
        self.logger = structlog.get_logger().bind(component="network_service")

    async def list(self) -> list[Network]:
        data = await self.gateway.run_json(["network", "ls", "--format", "json"])
        return [entry.to_network() for entry in decode_list(NetworkEntry, data)]

    async def create(self, spec: NetworkSpec) -> str:
        """Create a network and return its name."""
        args = ["network", "create"]
        if spec.driver:
            args.extend(["--driver", spec.driver])
        if spec.subnet:
            args.extend(["--subnet", spec.subnet])
        if spec.gateway:
            args.extend(["--gateway", spec.gateway])
        if spec.internal:
            args.append("--internal")
        if spec.ipv6:
            args.append("--ipv6")
        args.extend(_key_value_args("--label", spec.labels))
        args.extend(_key_value_args("--opt", spec.options))
        output = await self.gateway.run([*args, spec.name])
        self.logger.info("Network created", name=spec.name)
        return output.strip() or spec.name

    async def remove(self, name: str, force: bool = False) -> None:
        args = ["network", "rm"]
        if force:
            args.append("--force")
        await self.gateway.run([*args, name])
        self.logger.info("Network removed", name=name, force=force)
