"""Model/store reconciliation.

Architecture:
    model snapshot ─┐
                    ├─ classify (revision stamps) ─ apply ─ audit
    store state  ───┘

Usage:
    from pipenet.sync import SyncCoordinator

    coordinator = SyncCoordinator(settings)
    report = coordinator.sync(model, store, "apply", approve=reviewer)
"""

from pipenet.sync.coordinator import (
    PlannedChange,
    SyncCoordinator,
    SyncPlan,
    propose_writeback,
)
from pipenet.sync.locks import DEFAULT_LOCKS, EntityLockRegistry
from pipenet.sync.state import classify, pending_direction

__all__ = [
    "PlannedChange",
    "SyncCoordinator",
    "SyncPlan",
    "propose_writeback",
    "DEFAULT_LOCKS",
    "EntityLockRegistry",
    "classify",
    "pending_direction",
]
