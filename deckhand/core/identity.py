"""Target identity resolution for rootless engine delegation."""

import os
import pwd
from dataclasses import dataclass
from pathlib import Path

import structlog

logger = structlog.get_logger()

RUNTIME_DIR = Path("/run/user")
SOCKET_SUFFIX = Path("podman") / "podman.sock"


@dataclass(frozen=True)
class TargetIdentity:
    """Which OS user's engine instance a gateway addresses.

    ``user`` of ``None`` means the current process's own engine instance.
    """

    user: str | None = None

    @property
    def mode(self) -> str:
        return "rootless" if self.user else "rootful"


def is_running_as_root() -> bool:
    return os.geteuid() == 0


def resolve_target_identity(
    override: str | None = None,
    *,
    environ: dict[str, str] | None = None,
    runtime_dir: Path = RUNTIME_DIR,
    running_as_root: bool | None = None,
) -> TargetIdentity:
    """Resolve the target identity once at startup.

    Order: explicit override, then the invoking sudo user, then the first user
    with an active engine socket. The last two only apply when running as root.
    """
    if override:
        return TargetIdentity(user=override)

    env = os.environ if environ is None else environ
    if running_as_root is None:
        running_as_root = is_running_as_root()
    if not running_as_root:
        return TargetIdentity()

    sudo_user = env.get("SUDO_USER", "")
    if sudo_user and sudo_user != "root":
        logger.info("Using invoking sudo user for engine delegation", user=sudo_user)
        return TargetIdentity(user=sudo_user)

    detected = detect_socket_user(runtime_dir)
    if detected:
        logger.info("Detected user with active engine socket", user=detected)
    return TargetIdentity(user=detected)


def detect_socket_user(runtime_dir: Path = RUNTIME_DIR) -> str | None:
    """Return the first user owning ``<runtime_dir>/<uid>/podman/podman.sock``."""
    try:
        entries = sorted(runtime_dir.iterdir())
    except OSError:
        return None

    for entry in entries:
        if not entry.is_dir() or not entry.name.isdigit():
            continue
        if not (entry / SOCKET_SUFFIX).exists():
            continue
        try:
            return pwd.getpwuid(int(entry.name)).pw_name
        except KeyError:
            continue
    return None
