"""
Deckhand Services

Service layer over the engine gateway: one service per resource family.
"""

from .container import ContainerService  # noqa: F401
from .image import ImageService  # noqa: F401
from .resources import NetworkService, VolumeService  # noqa: F401
from .stack import StackService  # noqa: F401
from .streaming import ExecSession, StreamingService  # noqa: F401
from .update import UpdateService  # noqa: F401

__all__ = [
    "ContainerService",
    "ImageService",
    "VolumeService",
    "NetworkService",
    "StreamingService",
    "ExecSession",
    "StackService",
    "UpdateService",
]
