"""Collaborator protocols.

The engine never talks to a host application or database directly. It is
handed a model collaborator (the open authoritative model) and a store
collaborator (the reconciliation store) and only uses the calls below.
"""

from __future__ import annotations

from typing import Any, Protocol

from pipenet.models.audit import AuditRecord
from pipenet.models.findings import Finding, FindingStatus
from pipenet.models.network import Entity, Pipe, Structure
from pipenet.models.sync import SyncRecord


class ModelCollaborator(Protocol):
    """Read/write view of the authoritative network model."""

    def list_structures(self) -> list[Structure]:
        ...

    def list_pipes(self) -> list[Pipe]:
        ...

    def write_entity(self, entity_id: str, fields: dict[str, Any]) -> str | None:
        """Apply field values to one entity in a single atomic call.

        Returns:
            The entity's new revision stamp, or None if the host does not
            report one.
        """
        ...


class StoreCollaborator(Protocol):
    """Reconciliation store: entities, sync state, findings, corrections."""

    def load_sync_state(self) -> list[SyncRecord]:
        ...

    def load_sync_record(self, entity_id: str) -> SyncRecord | None:
        ...

    def save_sync_records(self, records: list[SyncRecord]) -> None:
        ...

    def upsert_findings(self, findings: list[Finding]) -> None:
        ...

    def load_findings(self) -> list[Finding]:
        ...

    def set_finding_status(self, key: str, status: FindingStatus) -> Finding:
        ...

    def upsert_entities(self, entities: list[Entity]) -> None:
        ...

    def load_entities(self) -> list[Entity]:
        ...

    def load_pending_corrections(self) -> list[Entity]:
        """Entities whose store-side values were edited since the last sync."""
        ...

    def load_correction(self, entity_id: str) -> Entity | None:
        ...

    def record_correction(self, entity: Entity) -> None:
        ...

    def clear_corrections(self, entity_ids: list[str]) -> None:
        ...


class AuditSink(Protocol):
    """Append-only destination for audit records."""

    def append_audit(self, record: AuditRecord) -> int:
        """Persist a record and return its sequence number."""
        ...

    def load_audit(self, limit: int | None = None) -> list[AuditRecord]:
        ...
