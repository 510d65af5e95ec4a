"""
Image Service

Image listing, pulling, inspection and update checks. Existence checks are
cached briefly per canonical reference; pulls and removals invalidate them.
"""

from __future__ import annotations

import time

import structlog
from pydantic import BaseModel

from ..core.exceptions import EngineRejectedError, ParseError, PreconditionError
from ..core.gateway import EngineGateway
from ..models.engine import ImageInspectEntry, ImageListEntry, decode_list
from ..models.image import Image, ImageConfig, ImageUpdateCheck


class CacheEntry(BaseModel):
    """Cached existence result with TTL support."""

    value: bool
    expires_at: float

    def is_expired(self) -> bool:
        return time.monotonic() > self.expires_at


class ImageService:
    """Service for image operations."""

    def __init__(self, gateway: EngineGateway):
        self.gateway = gateway
        self.logger = structlog.get_logger().bind(component="image_service")
        self._exists_cache: dict[str, CacheEntry] = {}

    async def list(self) -> list[Image]:
        """List local images."""
        data = await self.gateway.run_json(["images", "--format", "json"])
        return [entry.to_image() for entry in decode_list(ImageListEntry, data)]

    async def pull(self, ref: str) -> str:
        """Pull an image and return the engine's output (the image id)."""
        canonical = self.gateway.canonicalize(ref)
        self.logger.info("Pulling image", image=canonical)
        try:
            output = await self.gateway.run(
                ["pull", "--quiet", canonical], timeout=self.gateway.settings.pull_timeout
            )
        finally:
            self.invalidate(canonical)
        return output.strip()

    def invalidate(self, ref: str) -> None:
        """Drop the cached existence result for an image."""
        self._exists_cache.pop(self.gateway.canonicalize(ref), None)

    async def exists(self, ref: str) -> bool:
        """Check whether an image is present locally."""
        canonical = self.gateway.canonicalize(ref)
        cached = self._exists_cache.get(canonical)
        if cached is not None and not cached.is_expired():
            return cached.value

        try:
            await self.gateway.run(["image", "exists", canonical])
            found = True
        except EngineRejectedError as e:
            # exit 1 means absent; anything else is a real failure
            if e.returncode != 1:
                raise
            found = False

        self._exists_cache[canonical] = CacheEntry(
            value=found, expires_at=time.monotonic() + self.gateway.settings.image_exists_ttl
        )
        return found

    async def remove(self, ref: str, force: bool = False) -> None:
        """Remove an image by reference or id."""
        args = ["rmi"]
        if force:
            args.append("--force")
        try:
            await self.gateway.run([*args, ref])
        finally:
            # ids and short names cannot be mapped to a cache key
            self._exists_cache.clear()
        self.logger.info("Image removed", image=ref, force=force)

    async def digest(self, ref: str) -> str:
        """Digest of the local copy of an image."""
        output = await self.gateway.run(
            ["image", "inspect", "--format", "{{.Digest}}", self.gateway.canonicalize(ref)]
        )
        return output.strip()

    async def inspect(self, ref: str, pull: bool = False) -> ImageConfig:
        """Configuration hints of an image, pulling it first when allowed.

        Raises:
            PreconditionError: Image is not present locally and pull is False
        """
        canonical = self.gateway.canonicalize(ref)
        if not await self.exists(canonical):
            if not pull:
                raise PreconditionError(f"Image not found locally: {canonical}")
            await self.pull(canonical)

        data = await self.gateway.run_json(["image", "inspect", "--format", "json", canonical])
        entries = decode_list(ImageInspectEntry, data)
        if not entries:
            raise ParseError(f"Empty inspect output for image {canonical}")
        return entries[0].to_image_config(canonical)

    async def check_update(self, ref: str) -> ImageUpdateCheck:
        """Pull an image and report whether its digest changed."""
        canonical = self.gateway.canonicalize(ref)
        local_digest = await self.digest(canonical)
        await self.pull(canonical)
        remote_digest = await self.digest(canonical)
        if local_digest != remote_digest:
            self.logger.info("Image update available", image=canonical)
        return ImageUpdateCheck(
            image=canonical, local_digest=local_digest, remote_digest=remote_digest
        )
