"""Data models for deckhand."""

from .backup import Backup, BackupMount  # noqa: F401
from .container import (  # noqa: F401
    Container,
    ContainerConfig,
    ContainerLog,
    ContainerSpec,
    ContainerStats,
    ContainerSummary,
    Mount,
    PortMapping,
)
from .enums import ContainerStatus, StackStatus, UpdateStep, parse_status  # noqa: F401
from .image import Image, ImageConfig, ImageEnvVar, ImagePort, ImageUpdateCheck  # noqa: F401
from .resources import Network, NetworkSpec, Volume, VolumeSpec  # noqa: F401
from .stack import StackContainer  # noqa: F401
from .update import UpdateProgress, UpdateRequest  # noqa: F401

__all__ = [
    # Container models
    "Container",
    "ContainerConfig",
    "ContainerLog",
    "ContainerSpec",
    "ContainerStats",
    "ContainerSummary",
    "Mount",
    "PortMapping",
    # Enums
    "ContainerStatus",
    "StackStatus",
    "UpdateStep",
    "parse_status",
    # Image models
    "Image",
    "ImageConfig",
    "ImageEnvVar",
    "ImagePort",
    "ImageUpdateCheck",
    # Volume and network models
    "Network",
    "NetworkSpec",
    "Volume",
    "VolumeSpec",
    # Stack, backup and update models
    "StackContainer",
    "Backup",
    "BackupMount",
    "UpdateProgress",
    "UpdateRequest",
]
