"""Per-entity reconciliation state from revision stamps.

    model stamp vs last-synced | store stamp vs last-synced | state
    unchanged                  | unchanged                  | InSync
    advanced                   | unchanged                  | ToStore
    unchanged                  | advanced                   | ToModel
    advanced                   | advanced                   | Conflict

The store stamp is the revision of a pending correction when one exists,
otherwise the last-synced store stamp.
"""

from __future__ import annotations

from pipenet.models.network import Entity
from pipenet.models.sync import PendingDirection, SyncRecord, SyncState


def classify(
    model_entity: Entity | None,
    record: SyncRecord | None,
    correction: Entity | None = None,
) -> SyncState:
    if model_entity is None:
        return SyncState.MISSING

    if record is None:
        # Never synced: a correction for it means both sides claim it.
        return SyncState.CONFLICT if correction is not None else SyncState.TO_STORE

    model_changed = model_entity.revision != record.model_revision
    store_changed = correction is not None and correction.revision != record.store_revision

    if model_changed and store_changed:
        return SyncState.CONFLICT
    if model_changed:
        return SyncState.TO_STORE
    if store_changed:
        return SyncState.TO_MODEL
    return SyncState.IN_SYNC


def pending_direction(state: SyncState) -> PendingDirection:
    return {
        SyncState.TO_STORE: PendingDirection.TO_STORE,
        SyncState.TO_MODEL: PendingDirection.TO_MODEL,
        SyncState.CONFLICT: PendingDirection.CONFLICT,
    }.get(state, PendingDirection.NONE)
