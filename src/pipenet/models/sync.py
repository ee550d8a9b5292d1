"""Sync records and reconciliation reports."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from pipenet.models.findings import utcnow
from pipenet.models.network import EntityType


class SyncState(str, Enum):
    """Per-entity reconciliation state derived from revision stamps."""

    IN_SYNC = "InSync"
    TO_STORE = "ToStore"
    TO_MODEL = "ToModel"
    CONFLICT = "Conflict"
    MISSING = "Missing"  # known to the store, absent from the model snapshot


class PendingDirection(str, Enum):
    NONE = "None"
    TO_STORE = "ToStore"
    TO_MODEL = "ToModel"
    CONFLICT = "Conflict"


class SyncMode(str, Enum):
    DRY_RUN = "dry-run"
    APPLY = "apply"


class SyncRecord(BaseModel):
    """Last-synced state of one entity.

    `fields` are the values both sides agreed on at the last sync.
    """

    entity_id: str
    entity_type: EntityType
    model_revision: str
    store_revision: str
    pending: PendingDirection = PendingDirection.NONE
    fields: dict[str, Any] = Field(default_factory=dict)
    synced_at: datetime = Field(default_factory=utcnow)


class Outcome(str, Enum):
    """What happened to an entity during a sync run."""

    IN_SYNC = "in_sync"
    PLANNED = "planned"  # dry-run only
    APPLIED = "applied"
    FAILED = "failed"
    CONFLICT = "conflict"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    REJECTED = "rejected"
    BUSY = "busy"
    MISSING = "missing"
    CANCELLED = "cancelled"
    STALE = "stale"  # changed by another cycle after planning


class SyncEntry(BaseModel):
    """Report line for a single entity."""

    entity_id: str
    entity_type: EntityType
    state: SyncState
    outcome: Outcome
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    error: str = ""


class SyncReport(BaseModel):
    """Result of one sync cycle. Produced even under partial failure."""

    mode: SyncMode
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    findings: dict[str, int] = Field(default_factory=dict)
    entries: list[SyncEntry] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    def _ids(self, outcome: Outcome) -> list[str]:
        return [e.entity_id for e in self.entries if e.outcome == outcome]

    @property
    def applied(self) -> list[str]:
        return self._ids(Outcome.APPLIED)

    @property
    def failed(self) -> list[str]:
        return self._ids(Outcome.FAILED)

    @property
    def conflicted(self) -> list[str]:
        return self._ids(Outcome.CONFLICT)

    @property
    def awaiting_confirmation(self) -> list[str]:
        return self._ids(Outcome.AWAITING_CONFIRMATION)

    @property
    def errors(self) -> dict[str, str]:
        return {e.entity_id: e.error for e in self.entries if e.error}

    def entry(self, entity_id: str) -> SyncEntry | None:
        return next((e for e in self.entries if e.entity_id == entity_id), None)

    def summary(self) -> dict[str, Any]:
        """Counts for display: findings by kind, entities by outcome."""
        outcomes = {o.value: 0 for o in Outcome}
        for e in self.entries:
            outcomes[e.outcome.value] += 1
        return {
            "mode": self.mode.value,
            "findings": dict(self.findings),
            "entities": outcomes,
            "applied": self.applied,
            "failed": self.failed,
            "conflicted": self.conflicted,
            "errors": self.errors,
            "warnings": list(self.warnings),
        }
