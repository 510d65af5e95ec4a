"""Configuration loading for deckhand.

Settings are layered, lowest priority first: built-in defaults, the user config
file, the project config file, then environment variables (including ``.env``).
"""

import os
import re
from pathlib import Path
from typing import Any

import structlog
import yaml
from dotenv import load_dotenv

from .exceptions import DeckhandError
from .settings import EngineSettings

logger = structlog.get_logger()

DEFAULT_CONFIG_FILE = "config/deckhand.yml"
USER_CONFIG_FILE = Path.home() / ".config" / "deckhand" / "config.yml"

ALLOWED_ENV_VARS = {
    "HOME",
    "USER",
    "XDG_CONFIG_HOME",
    "XDG_DATA_HOME",
    "DECKHAND_CONFIG",
    "DECKHAND_BACKUP_ROOT",
    "DECKHAND_PODMAN_USER",
    "LOG_LEVEL",
}


class ConfigurationError(DeckhandError):
    """Configuration validation or loading failed."""


def load_config(config_path: str | Path | None = None) -> EngineSettings:
    """Load settings from defaults, YAML files and the environment.

    Args:
        config_path: Optional path to a project YAML config file

    Returns:
        Resolved engine settings
    """
    load_dotenv()

    merged: dict[str, Any] = {}
    _merge_config(merged, _load_yaml_config(USER_CONFIG_FILE))

    project_path = Path(config_path or os.getenv("DECKHAND_CONFIG", DEFAULT_CONFIG_FILE))
    _merge_config(merged, _load_yaml_config(project_path))

    # Environment wins over files
    from_env = EngineSettings()
    merged.update(from_env.model_dump(include=from_env.model_fields_set))

    try:
        settings = EngineSettings(**merged)
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    logger.debug(
        "Configuration loaded",
        config_file=str(project_path),
        engine=settings.engine_binary,
        backup_root=str(settings.backup_root),
    )
    return settings


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load a YAML configuration file; missing files yield an empty mapping."""
    if not config_path.exists():
        return {}

    try:
        content = _expand_yaml_config(config_path.read_text(encoding="utf-8"))
        loaded = yaml.safe_load(content)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config from {config_path}: {e}") from e

    if not isinstance(loaded, dict):
        return {}
    # Accept both a flat mapping and an ``engine:`` section
    section = loaded.get("engine", loaded)
    return section if isinstance(section, dict) else {}


def _expand_yaml_config(content: str) -> str:
    """Expand ${VAR} and $VAR references for allowlisted variables only."""

    def replace_if_allowed(match: re.Match) -> str:
        var_name = match.group(1)
        original_pattern = match.group(0)
        if var_name in ALLOWED_ENV_VARS:
            return os.getenv(var_name, original_pattern)
        logger.warning(
            "Environment variable not in allowlist, skipping expansion",
            variable=var_name,
        )
        return original_pattern

    content = re.sub(r"\$\{([^}]+)\}", replace_if_allowed, content)
    return re.sub(r"\$([A-Za-z_][A-Za-z0-9_]*)", replace_if_allowed, content)


def _merge_config(base: dict[str, Any], update: dict[str, Any]) -> None:
    """Merge configuration dictionaries with deep merging."""
    for key, value in update.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_config(base[key], value)
        else:
            base[key] = value
