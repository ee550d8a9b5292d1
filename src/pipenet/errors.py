"""Error taxonomy.

Tolerance violations are not errors: they are reported as Findings.
"""

from __future__ import annotations


class PipenetError(Exception):
    """Base class for all pipenet errors."""


class ConfigError(PipenetError):
    """Invalid or unreadable settings."""


class SourceUnavailable(PipenetError):
    """A collaborator could not be reached. Retryable."""


class IncompleteEntity(PipenetError):
    """A snapshot is referentially inconsistent. Fatal for that load."""

    def __init__(self, message: str, entity_ids: list[str] | None = None) -> None:
        super().__init__(message)
        self.entity_ids = entity_ids or []


class WriteConflict(PipenetError):
    """Both model and store changed since the last sync."""

    def __init__(self, entity_id: str) -> None:
        super().__init__(f"Entity {entity_id} changed on both sides since last sync")
        self.entity_id = entity_id


class WritebackFailure(PipenetError):
    """A confirmed write failed after all retries."""

    def __init__(self, entity_id: str, cause: BaseException | None = None) -> None:
        message = f"Write for entity {entity_id} failed"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
        self.entity_id = entity_id


class AuditUnavailable(PipenetError):
    """The audit sink rejected an append. Fatal for the current sync cycle."""


class CycleCancelled(PipenetError):
    """The caller cancelled a validation/sync cycle between steps."""
