"""Core exceptions for deckhand engine operations."""


class DeckhandError(Exception):
    """Base exception for deckhand operations."""


class EngineInvocationError(DeckhandError):
    """The engine process could not be started or its pipes failed."""


class EngineTimeoutError(EngineInvocationError):
    """Engine command exceeded its deadline and was terminated."""


class EngineRejectedError(DeckhandError):
    """Engine exited non-zero; carries the captured stderr verbatim."""

    def __init__(self, stderr: str, returncode: int | None = None, command: list[str] | None = None):
        self.stderr = stderr.strip()
        self.returncode = returncode
        self.command = command or []
        super().__init__(f"engine error: {self.stderr or f'exit code {returncode}'}")


class ParseError(DeckhandError):
    """Engine output did not match the expected shape."""


class PreconditionError(DeckhandError):
    """A required state for the operation does not hold."""


class ContainerNotFoundError(PreconditionError):
    """Inspect returned no container for the given identifier."""

    def __init__(self, container_id: str):
        self.container_id = container_id
        super().__init__(f"container not found: {container_id}")


class BackupError(DeckhandError):
    """Backup copy or restore failed."""


class PartialFailureError(DeckhandError):
    """Update workflow halted mid-sequence; nothing was rolled back."""

    def __init__(
        self,
        message: str,
        step: str,
        renamed_container: str | None = None,
        backup_id: str | None = None,
    ):
        self.step = step
        self.renamed_container = renamed_container
        self.backup_id = backup_id
        super().__init__(message)
