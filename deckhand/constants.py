"""Centralized constants for deckhand."""

# Compose labels
COMPOSE_PROJECT_LABEL = "com.docker.compose.project"
COMPOSE_SERVICE_LABEL = "com.docker.compose.service"
COMPOSE_FILE_NAME = "docker-compose.yml"

# Label prefixes the engine adds itself; not carried over on recreation
INTERNAL_LABEL_PREFIXES = ("io.podman.", "org.opencontainers.")

# Timestamp format for backup ids and renamed containers
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
OLD_CONTAINER_INFIX = "-old-"

# Backups
BACKUP_METADATA_FILE = "backup.json"
MOUNT_DIR_PREFIX = "mount_"

# Interactive exec shell: bash when the image has it, sh otherwise
INTERACTIVE_SHELL = ["/bin/sh", "-c", "exec /bin/bash 2>/dev/null || exec /bin/sh"]

# Per-line buffer limit for streamed pipes; longer lines are read in chunks
STREAM_READ_LIMIT = 1024 * 1024
