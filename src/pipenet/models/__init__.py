"""Network, finding, sync and audit data models."""

from pipenet.models.geometry import Point3D
from pipenet.models.network import (
    Entity,
    EntityType,
    Pipe,
    Structure,
    StructureCategory,
    entity_to_model,
)
from pipenet.models.findings import (
    Finding,
    FindingKind,
    FindingStatus,
    Severity,
    count_by_kind,
    merge_findings,
)
from pipenet.models.sync import (
    Outcome,
    PendingDirection,
    SyncEntry,
    SyncMode,
    SyncRecord,
    SyncReport,
    SyncState,
)
from pipenet.models.audit import AuditRecord

__all__ = [
    "Point3D",
    "Entity",
    "EntityType",
    "Pipe",
    "Structure",
    "StructureCategory",
    "entity_to_model",
    "Finding",
    "FindingKind",
    "FindingStatus",
    "Severity",
    "count_by_kind",
    "merge_findings",
    "Outcome",
    "PendingDirection",
    "SyncEntry",
    "SyncMode",
    "SyncRecord",
    "SyncReport",
    "SyncState",
    "AuditRecord",
]
