"""
Container Update Service

Replaces a container's image in place: config, backup, pull, stop, rename,
create, start, cleanup. The old container is renamed rather than removed, so
a failure at any later step leaves it (and any backup) for manual recovery.
Nothing is rolled back automatically.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import aclosing, suppress
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from ..constants import OLD_CONTAINER_INFIX, TIMESTAMP_FORMAT
from ..core.backup import BackupManager, ProgressCallback
from ..core.exceptions import DeckhandError, PartialFailureError, PreconditionError
from ..core.settings import EngineSettings
from ..models.backup import Backup
from ..models.enums import ContainerStatus, UpdateStep
from ..models.update import UpdateProgress, UpdateRequest
from .container import ContainerService
from .image import ImageService
from .streaming import StreamingService

RUNNING_STATES = {ContainerStatus.RUNNING, ContainerStatus.PAUSED, ContainerStatus.RESTARTING}


async def _relay(queue: asyncio.Queue, task: asyncio.Task) -> AsyncIterator[str]:
    """Yield messages a task reports through ``queue`` until the task finishes."""
    try:
        while not task.done():
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({task, getter}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                yield getter.result()
            else:
                getter.cancel()
        while not queue.empty():
            yield queue.get_nowait()
    finally:
        if not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task


def old_container_name(name: str, now: datetime | None = None) -> str:
    """Name the replaced container is parked under."""
    now = now or datetime.now(UTC)
    return f"{name}{OLD_CONTAINER_INFIX}{now.strftime(TIMESTAMP_FORMAT)}"


class UpdateService:
    """Service orchestrating container image updates."""

    def __init__(
        self,
        containers: ContainerService,
        images: ImageService,
        streaming: StreamingService,
        backups: BackupManager,
        settings: EngineSettings | None = None,
    ):
        self.containers = containers
        self.images = images
        self.streaming = streaming
        self.backups = backups
        self.settings = settings or containers.gateway.settings
        self.logger = structlog.get_logger().bind(component="update_service")
        self._active: set[str] = set()

    async def update(self, request: UpdateRequest) -> AsyncIterator[UpdateProgress]:
        """Run the update workflow, yielding one event per step.

        The final event has ``complete=True`` on success or ``error=True`` on
        failure. Error details name the renamed container and the backup so the
        previous state can be recovered by hand.
        """
        step = UpdateStep.CONFIG
        recovery: dict[str, Any] = {}
        claimed: str | None = None

        def event(step: UpdateStep, message: str, progress: int | None = None, **details: Any) -> UpdateProgress:
            merged = {**recovery, **details}
            return UpdateProgress(step=step, message=message, progress=progress, details=merged or None)

        try:
            yield event(step, "Reading container configuration", 5)
            config = await self.containers.get_config(request.container_id)
            container = await self.containers.inspect(request.container_id)
            name = config.name
            if name in self._active:
                raise PreconditionError(f"An update of {name} is already in progress")
            self._active.add(name)
            claimed = name

            new_image = self.containers.gateway.canonicalize(request.new_image or config.image)
            self.logger.info("Starting container update", container=name, image=new_image)
            yield event(step, f"Updating {name} to {new_image}", 10, image=new_image)

            if request.create_backup:
                step = UpdateStep.BACKUP
                if container.bind_mounts:
                    yield event(step, f"Backing up {len(container.bind_mounts)} bind mount(s)", 15)
                    queue: asyncio.Queue[str] = asyncio.Queue()
                    task = asyncio.create_task(
                        self.backups.backup_bind_mounts(
                            container,
                            overwrite=request.overwrite_backup,
                            progress=queue.put_nowait,
                            backup_root=request.backup_path,
                        )
                    )
                    async with aclosing(_relay(queue, task)) as messages:
                        async for message in messages:
                            yield event(step, message, 20)
                    backup: Backup = task.result()
                    recovery["backup_id"] = backup.id
                    if request.backup_path:
                        recovery["backup_root"] = request.backup_path
                    yield event(step, f"Backup created: {backup.id}", 25, backup_path=backup.backup_path)
                else:
                    yield event(step, "No bind mounts to back up", 25)

            step = UpdateStep.PULL
            yield event(step, f"Pulling {new_image}", 30)
            async with aclosing(self.streaming.pull_with_progress(new_image)) as lines:
                async for line in lines:
                    yield event(step, line, 40)
            if not await self.images.exists(new_image):
                raise PreconditionError(f"Image {new_image} is missing after pull")
            yield event(step, "Image pulled", 50)

            step = UpdateStep.STOP
            if container.status in RUNNING_STATES:
                yield event(step, f"Stopping {name}", 55)
                await self.containers.stop(container.container_id, timeout=request.stop_timeout)
                yield event(step, f"Stopped {name}", 60)
            else:
                yield event(step, f"{name} is not running", 60)

            step = UpdateStep.RENAME
            renamed = old_container_name(name)
            await self.containers.rename(container.container_id, renamed)
            recovery["renamed_container"] = renamed
            yield event(step, f"Renamed {name} to {renamed}", 70)

            step = UpdateStep.CREATE
            new_id = await self.containers.create(config.with_image(new_image))
            yield event(step, f"Created {name} from {new_image}", 80, new_container_id=new_id)

            step = UpdateStep.START
            if request.start_after:
                await self.containers.start(new_id)
                yield event(step, f"Started {name}", 90)
            else:
                yield event(step, "Start skipped", 90)

            if request.remove_old:
                step = UpdateStep.CLEANUP
                if request.start_after:
                    await self.containers.remove(renamed, force=True)
                    recovery.pop("renamed_container")
                    yield event(step, f"Removed {renamed}", 95)
                else:
                    # Only a started replacement makes the old container disposable
                    yield event(step, f"Kept {renamed}: new container was not started", 95)

            step = UpdateStep.COMPLETE
            self.logger.info("Container update complete", container=name, container_id=new_id[:12])
            yield UpdateProgress(
                step=step,
                message=f"{name} updated to {new_image}",
                progress=100,
                complete=True,
                details={**recovery, "new_container_id": new_id},
            )
        except (DeckhandError, ValueError, TypeError) as e:
            # ValueError covers pydantic validation of the rebuilt container spec
            self.logger.error(
                "Container update failed",
                container_id=request.container_id,
                step=step.value,
                error=str(e),
                error_type=type(e).__name__,
                **recovery,
            )
            yield UpdateProgress(
                step=step,
                message=str(e),
                error=True,
                details={**recovery, "error_type": type(e).__name__},
            )
        finally:
            if claimed is not None:
                self._active.discard(claimed)

    async def run_update(self, request: UpdateRequest) -> list[UpdateProgress]:
        """Run an update to completion and return its events.

        Raises:
            PartialFailureError: The workflow ended with an error event
        """
        async with aclosing(self.update(request)) as events:
            timeline = [progress async for progress in events]
        last = timeline[-1]
        if last.error:
            details = last.details or {}
            raise PartialFailureError(
                last.message,
                step=last.step.value,
                renamed_container=details.get("renamed_container"),
                backup_id=details.get("backup_id"),
            )
        return timeline

    async def restore(
        self,
        backup_id: str,
        progress: ProgressCallback | None = None,
        backup_root: str | Path | None = None,
    ) -> Backup:
        """Copy a backup's bind mounts back into their source directories.

        Pass the update's ``backup_path`` as ``backup_root`` for backups made
        outside the configured root.
        """
        return await self.backups.restore_backup(backup_id, progress=progress, backup_root=backup_root)
