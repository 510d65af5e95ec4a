"""Bind-mount backup and restore for container updates.

A backup is a directory ``<root>/<container>_<YYYYmmdd-HHMMSS>`` holding one
``mount_<i>`` copy per bind mount and a ``backup.json`` metadata document.
A directory without ``backup.json`` is not a backup.
"""

import asyncio
import os
import re
import shutil
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import structlog
from pydantic import ValidationError

from ..constants import BACKUP_METADATA_FILE, MOUNT_DIR_PREFIX, TIMESTAMP_FORMAT
from ..models.backup import Backup, BackupMount
from ..models.container import Container
from ..utils import format_size
from .exceptions import BackupError, EngineRejectedError, PreconditionError
from .gateway import EngineGateway

logger = structlog.get_logger()

ProgressCallback = Callable[[str], None]

_TIMESTAMP_SUFFIX = r"_\d{8}-\d{6}"


def _directory_size(path: Path) -> int:
    """Total size of regular files below ``path``; unreadable entries count as 0."""
    total = 0
    for dirpath, _, filenames in os.walk(path):
        for filename in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, filename)).st_size
            except OSError:
                continue
    return total


def _write_atomic(path: Path, content: str) -> None:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(content)
    os.replace(tmp, path)


class BackupManager:
    """Manager for container bind-mount backups."""

    def __init__(self, gateway: EngineGateway, backup_root: str | Path | None = None):
        self.gateway = gateway
        self.backup_root = Path(backup_root or gateway.settings.backup_root).expanduser()
        self.logger = logger.bind(component="backup_manager")
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, container_name: str) -> asyncio.Lock:
        """Lock guarding one container's backup tree."""
        return self._locks.setdefault(container_name, asyncio.Lock())

    def _root(self, backup_root: str | Path | None) -> Path:
        return Path(backup_root).expanduser() if backup_root else self.backup_root

    def _backup_dirs(self, root: Path, container_name: str) -> list[Path]:
        """Directories named like a backup of ``container_name``, complete or not."""
        if not root.is_dir():
            return []
        pattern = re.compile(re.escape(container_name) + _TIMESTAMP_SUFFIX)
        return sorted(
            entry for entry in root.iterdir() if entry.is_dir() and pattern.fullmatch(entry.name)
        )

    async def backup_bind_mounts(
        self,
        container: Container,
        *,
        overwrite: bool = False,
        progress: ProgressCallback | None = None,
        backup_root: str | Path | None = None,
    ) -> Backup:
        """Copy every bind mount of a container into a new backup.

        Args:
            container: Inspected container whose bind mounts are copied
            overwrite: Replace existing backups of this container
            progress: Called with a human-readable message per step
            backup_root: Override for the configured backup root

        Raises:
            PreconditionError: A backup exists and overwrite is False
            BackupError: A copy failed; the partial backup is removed
        """
        notify = progress or (lambda message: None)
        root = self._root(backup_root)
        name = container.name

        async with self.lock_for(name):
            candidates = self._backup_dirs(root, name)
            existing = [entry for entry in candidates if (entry / BACKUP_METADATA_FILE).is_file()]
            if existing and not overwrite:
                raise PreconditionError(
                    f"Existing backup found at {existing[0]}. "
                    "Set overwrite_backup to replace it"
                )
            # Directories without metadata are leftovers of interrupted backups
            for old in candidates:
                if old in existing:
                    notify(f"Removing existing backup: {old.name}")
                    self.logger.info("Removing existing backup", path=str(old))
                else:
                    self.logger.info("Removing incomplete backup", path=str(old))
                await asyncio.to_thread(shutil.rmtree, old)

            created_at = datetime.now(UTC)
            backup_id = f"{name}_{created_at.strftime(TIMESTAMP_FORMAT)}"
            backup_dir = root / backup_id
            try:
                backup_dir.mkdir(parents=True)
            except OSError as e:
                raise BackupError(f"Failed to create backup directory {backup_dir}: {e}") from e

            backup = Backup(
                id=backup_id,
                container_id=container.container_id,
                container_name=name,
                image=container.image,
                backup_path=str(backup_dir),
                created_at=created_at,
            )
            try:
                for index, mount in enumerate(container.mounts):
                    if not mount.is_bind:
                        continue
                    notify(f"Backing up mount {index + 1}: {mount.source} -> {mount.target}")
                    mount_dir = backup_dir / f"{MOUNT_DIR_PREFIX}{index}"
                    mount_dir.mkdir()
                    await self._copy_tree(Path(mount.source), mount_dir)
                    size = await asyncio.to_thread(_directory_size, mount_dir)
                    backup.mounts.append(
                        BackupMount(
                            source=mount.source,
                            target=mount.target,
                            backup_path=str(mount_dir),
                            type=mount.type,
                            size_bytes=size,
                        )
                    )
                    backup.size_bytes += size

                _write_atomic(backup_dir / BACKUP_METADATA_FILE, backup.model_dump_json(indent=2))
            except OSError as e:
                shutil.rmtree(backup_dir, ignore_errors=True)
                raise BackupError(f"Backup of {name} failed: {e}") from e
            except BaseException:
                # Includes cancellation; the partial directory must not outlive the attempt
                shutil.rmtree(backup_dir, ignore_errors=True)
                raise

        self.logger.info(
            "Backup created",
            backup_id=backup_id,
            mounts=len(backup.mounts),
            size=format_size(backup.size_bytes),
        )
        return backup

    async def _copy_tree(self, source: Path, destination: Path, delete: bool = False) -> None:
        """Copy the contents of ``source`` into ``destination``."""
        timeout = self.gateway.settings.backup_timeout
        if shutil.which("rsync"):
            cmd = ["rsync", "-a"]
            if delete:
                cmd.append("--delete")
            cmd.extend([f"{source}/", f"{destination}/"])
        else:
            cmd = ["cp", "-a", f"{source}/.", f"{destination}/"]
        try:
            await self.gateway.run_external(cmd, timeout=timeout)
        except EngineRejectedError as e:
            raise BackupError(f"Failed to copy {source}: {e.stderr}") from e

    def list_backups(
        self, container_name: str | None = None, backup_root: str | Path | None = None
    ) -> list[Backup]:
        """Backups under the root, newest first; unreadable metadata is skipped."""
        root = self._root(backup_root)
        if not root.is_dir():
            return []
        backups = []
        for entry in root.iterdir():
            metadata = entry / BACKUP_METADATA_FILE
            if not metadata.is_file():
                continue
            try:
                backup = Backup.model_validate_json(metadata.read_text())
            except (OSError, ValidationError) as e:
                self.logger.warning("Skipping unreadable backup", path=str(entry), error=str(e))
                continue
            if container_name is None or backup.container_name == container_name:
                backups.append(backup)
        return sorted(backups, key=lambda b: b.created_at, reverse=True)

    def get_backup(self, backup_id: str, backup_root: str | Path | None = None) -> Backup:
        """Load one backup by id, from ``backup_root`` when given.

        Raises:
            PreconditionError: No backup with that id exists
        """
        if not backup_id or "/" in backup_id or backup_id in (".", ".."):
            raise PreconditionError(f"Invalid backup id: {backup_id!r}")
        metadata = self._root(backup_root) / backup_id / BACKUP_METADATA_FILE
        if not metadata.is_file():
            raise PreconditionError(f"Backup not found: {backup_id}")
        try:
            return Backup.model_validate_json(metadata.read_text())
        except (OSError, ValidationError) as e:
            raise BackupError(f"Unreadable backup metadata for {backup_id}: {e}") from e

    async def restore_backup(
        self,
        backup_id: str,
        progress: ProgressCallback | None = None,
        backup_root: str | Path | None = None,
    ) -> Backup:
        """Copy a backup's mounts back over their original sources.

        Sources are made identical to the backup: files added since are removed.
        """
        notify = progress or (lambda message: None)
        backup = self.get_backup(backup_id, backup_root)
        async with self.lock_for(backup.container_name):
            for index, mount in enumerate(backup.mounts):
                notify(f"Restoring mount {index + 1}: {mount.target}")
                source = Path(mount.backup_path)
                destination = Path(mount.source)
                if not shutil.which("rsync"):
                    # cp cannot delete, so clear the destination first
                    await asyncio.to_thread(shutil.rmtree, destination, True)
                destination.mkdir(parents=True, exist_ok=True)
                await self._copy_tree(source, destination, delete=True)
        self.logger.info("Backup restored", backup_id=backup_id, mounts=len(backup.mounts))
        return backup

    async def delete_backup(self, backup_id: str, backup_root: str | Path | None = None) -> None:
        """Remove a backup directory and its metadata."""
        backup = self.get_backup(backup_id, backup_root)
        async with self.lock_for(backup.container_name):
            await asyncio.to_thread(shutil.rmtree, self._root(backup_root) / backup_id)
        self.logger.info("Backup deleted", backup_id=backup_id)
