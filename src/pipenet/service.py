"""Command surface for callers (CLI, UI, scripts).

Both commands take their collaborators explicitly; no process-wide session
or "active document" state is kept.
"""

from __future__ import annotations

from pipenet.audit import AuditLog
from pipenet.collaborators.base import ModelCollaborator, StoreCollaborator
from pipenet.graph.snapshot import load_snapshot
from pipenet.models.findings import Finding
from pipenet.models.geometry import Point3D
from pipenet.models.sync import SyncMode, SyncReport
from pipenet.settings import Settings
from pipenet.sync.coordinator import Approver, SyncCoordinator
from pipenet.validators.engine import validate_network


def validate(
    model: ModelCollaborator,
    settings: Settings | None = None,
    reference_points: dict[str, Point3D] | None = None,
) -> list[Finding]:
    """Snapshot the model and return its findings. Read-only."""
    settings = settings or Settings()
    graph = load_snapshot(model, settings)
    return validate_network(graph, settings, reference_points)


def sync(
    model: ModelCollaborator,
    store: StoreCollaborator,
    mode: SyncMode | str = SyncMode.DRY_RUN,
    approve: Approver | None = None,
    settings: Settings | None = None,
    reference_points: dict[str, Point3D] | None = None,
    audit: AuditLog | None = None,
) -> SyncReport:
    """Run one reconciliation cycle between model and store."""
    coordinator = SyncCoordinator(
        settings=settings, audit=audit, reference_points=reference_points
    )
    return coordinator.sync(model, store, mode, approve)
