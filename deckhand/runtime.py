"""Deckhand runtime: wires settings, identity, gateway and services together."""

from pathlib import Path

import structlog

from .core.backup import BackupManager
from .core.config_loader import load_config
from .core.gateway import EngineGateway
from .core.identity import TargetIdentity, resolve_target_identity
from .core.settings import EngineSettings
from .services import (
    ContainerService,
    ImageService,
    NetworkService,
    StackService,
    StreamingService,
    UpdateService,
    VolumeService,
)

logger = structlog.get_logger()


class Deckhand:
    """One engine target with every service bound to it.

    Use as an async context manager so engine processes still running on exit
    are terminated.
    """

    def __init__(self, settings: EngineSettings | None = None, identity: TargetIdentity | None = None):
        self.settings = settings or EngineSettings()
        self.identity = identity or resolve_target_identity(self.settings.podman_user)
        self.gateway = EngineGateway(self.identity, self.settings)

        self.containers = ContainerService(self.gateway)
        self.images = ImageService(self.gateway)
        self.volumes = VolumeService(self.gateway)
        self.networks = NetworkService(self.gateway)
        self.streaming = StreamingService(self.gateway, self.containers, self.images)
        self.stacks = StackService(self.gateway)
        self.backups = BackupManager(self.gateway)
        self.updates = UpdateService(
            self.containers, self.images, self.streaming, self.backups, self.settings
        )

        logger.info(
            "Deckhand initialized",
            engine=self.settings.engine_binary,
            mode=self.gateway.mode,
            user=self.identity.user,
        )

    @classmethod
    def from_config(cls, config_path: str | Path | None = None) -> "Deckhand":
        """Build from the layered YAML and environment configuration."""
        return cls(load_config(config_path))

    async def close(self) -> None:
        await self.gateway.cleanup_all()

    async def __aenter__(self) -> "Deckhand":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
