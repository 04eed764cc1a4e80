"""Exceptions raised by the semantic memory engine."""


class ValidationError(ValueError):
    """Raised when input validation fails."""


class PersistenceError(Exception):
    """Raised when a durable write or delete fails.

    The in-memory state has already been committed when this is raised.
    """

    def __init__(self, message: str, memory_ids: list[str] | None = None):
        super().__init__(message)
        self.memory_ids = memory_ids or []
