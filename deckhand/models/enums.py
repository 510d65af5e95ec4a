"""Enum definitions for deckhand models."""

from enum import Enum
from typing import Literal

# Type aliases
ProtocolLiteral = Literal["tcp", "udp", "sctp"]
StackAction = Literal["up", "down", "start", "stop", "restart", "pull"]


class ContainerStatus(str, Enum):
    """Lifecycle status of a container."""

    CREATED = "created"
    RUNNING = "running"
    PAUSED = "paused"
    RESTARTING = "restarting"
    REMOVING = "removing"
    EXITED = "exited"
    DEAD = "dead"
    UNKNOWN = "unknown"


# Engine state strings that differ from the enum values
_STATUS_ALIASES: dict[str, ContainerStatus] = {
    "configured": ContainerStatus.CREATED,
    "initialized": ContainerStatus.CREATED,
    "stopped": ContainerStatus.EXITED,
}


def parse_status(state: object) -> ContainerStatus:
    """Map any engine state value onto ContainerStatus; unseen values are UNKNOWN."""
    if not isinstance(state, str):
        return ContainerStatus.UNKNOWN
    key = state.strip().lower()
    try:
        return ContainerStatus(key)
    except ValueError:
        return _STATUS_ALIASES.get(key, ContainerStatus.UNKNOWN)


class UpdateStep(str, Enum):
    """Steps of the container update workflow, in execution order."""

    CONFIG = "config"
    BACKUP = "backup"
    PULL = "pull"
    STOP = "stop"
    RENAME = "rename"
    CREATE = "create"
    START = "start"
    CLEANUP = "cleanup"
    COMPLETE = "complete"


class StackStatus(str, Enum):
    """Aggregate state of a compose stack."""

    ACTIVE = "active"
    PARTIAL = "partial"
    STOPPED = "stopped"
