"""Sync coordinator: reconcile the model with the reconciliation store.

One cycle is load -> validate -> classify -> apply:

1. Load a model snapshot and validate it.
2. Read the store's sync state and pending corrections, and classify each
   entity (InSync, ToStore, ToModel, Conflict, Missing).
3. In apply mode:
   - findings are merged into the store (vanished ones become Resolved)
   - ToStore entities are pushed to the store
   - ToModel entities go through the confirmation gate; only accepted
     ones are written to the model
   - Conflicts are reported and left untouched on both sides

Each entity is applied independently. A failure is recorded against that
entity and the cycle moves on, so a retry only needs the failed subset.
Entities are re-read under their lock; one that another cycle changed since
planning is skipped as stale.
Every applied write is audited; if the audit sink fails the cycle stops.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Union

from pipenet.audit import AuditLog
from pipenet.collaborators.base import ModelCollaborator, StoreCollaborator
from pipenet.errors import CycleCancelled, WriteConflict, WritebackFailure
from pipenet.graph.network import NetworkGraph
from pipenet.graph.snapshot import load_snapshot
from pipenet.models.findings import Finding, count_by_kind, merge_findings, utcnow
from pipenet.models.geometry import Point3D
from pipenet.models.network import Entity, EntityType
from pipenet.models.sync import (
    Outcome,
    PendingDirection,
    SyncEntry,
    SyncMode,
    SyncRecord,
    SyncReport,
    SyncState,
)
from pipenet.retry import RetryConfig, call_with_retry
from pipenet.settings import Settings
from pipenet.sync.locks import DEFAULT_LOCKS, EntityLockRegistry
from pipenet.sync.state import classify
from pipenet.validators.engine import validate_network

logger = logging.getLogger(__name__)


@dataclass
class PlannedChange:
    """Classification of one entity for the current cycle."""

    entity_id: str
    entity_type: EntityType
    state: SyncState
    model_entity: Entity | None = None
    record: SyncRecord | None = None
    correction: Entity | None = None

    @property
    def current_fields(self) -> dict[str, Any] | None:
        return self.model_entity.fields if self.model_entity else None

    @property
    def proposed_fields(self) -> dict[str, Any] | None:
        """Model fields after applying the pending correction."""
        if self.correction is None:
            return None
        return {**(self.current_fields or {}), **self.correction.fields}


@dataclass
class SyncPlan:
    graph: NetworkGraph
    findings: list[Finding] = field(default_factory=list)
    changes: list[PlannedChange] = field(default_factory=list)

    def by_state(self, state: SyncState) -> list[PlannedChange]:
        return [c for c in self.changes if c.state == state]

    def get(self, entity_id: str) -> PlannedChange | None:
        return next((c for c in self.changes if c.entity_id == entity_id), None)


def _stamps(record: SyncRecord | None) -> tuple[str, str] | None:
    return (record.model_revision, record.store_revision) if record else None


def _revision(entity: Entity | None) -> str | None:
    return entity.revision if entity else None


Approver = Union[Callable[[list[PlannedChange]], Iterable[str]], Iterable[str]]


def propose_writeback(
    changes: list[PlannedChange],
    approve: Approver | None,
) -> tuple[list[str], list[str]]:
    """Confirmation gate for model write-back.

    Args:
        changes: Planned changes; only ToModel ones are proposed.
        approve: A callable receiving the proposed changes and returning
            the ids to accept, or a collection of accepted ids. None means
            nobody has reviewed them yet: nothing is accepted or rejected.

    Returns:
        (accepted ids, rejected ids)
    """
    proposed = [c for c in changes if c.state == SyncState.TO_MODEL]
    if approve is None or not proposed:
        return [], []
    chosen = set(approve(proposed)) if callable(approve) else set(approve)
    accepted = [c.entity_id for c in proposed if c.entity_id in chosen]
    rejected = [c.entity_id for c in proposed if c.entity_id not in chosen]
    return accepted, rejected


class SyncCoordinator:
    """Drives validation/sync cycles between a model and a store.

    Usage:
        coordinator = SyncCoordinator(settings)
        report = coordinator.sync(model, store, SyncMode.APPLY, approve={"S1"})
    """

    def __init__(
        self,
        settings: Settings | None = None,
        audit: AuditLog | None = None,
        locks: EntityLockRegistry | None = None,
        reference_points: dict[str, Point3D] | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.retry = RetryConfig.from_settings(self.settings)
        self.audit = audit
        self.locks = locks or DEFAULT_LOCKS
        self.reference_points = reference_points or {}
        self.cancel = cancel

    # ── Planning ──────────────────────────────────────────────────────

    def _call(self, fn: Callable[..., Any], *args: Any, label: str) -> Any:
        return call_with_retry(fn, *args, retry=self.retry, label=label)

    def _check_cancel(self, phase: str) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise CycleCancelled(f"Cycle cancelled during {phase}")

    def classify_all(
        self,
        model: ModelCollaborator,
        store: StoreCollaborator,
    ) -> tuple[NetworkGraph, list[PlannedChange]]:
        """Load the snapshot and store state and classify every entity."""
        graph = load_snapshot(model, self.settings, self.retry)
        self._check_cancel("snapshot load")

        records = {
            r.entity_id: r for r in self._call(store.load_sync_state, label="load_sync_state")
        }
        corrections = {
            c.entity_id: c
            for c in self._call(store.load_pending_corrections, label="load_pending_corrections")
        }
        model_entities = {e.entity_id: e for e in graph.entities()}

        changes: list[PlannedChange] = []
        for entity_id in sorted(set(model_entities) | set(records) | set(corrections)):
            model_entity = model_entities.get(entity_id)
            record = records.get(entity_id)
            correction = corrections.get(entity_id)
            known = model_entity or record or correction
            changes.append(
                PlannedChange(
                    entity_id=entity_id,
                    entity_type=known.entity_type,
                    state=classify(model_entity, record, correction),
                    model_entity=model_entity,
                    record=record,
                    correction=correction,
                )
            )
        return graph, changes

    def plan(self, model: ModelCollaborator, store: StoreCollaborator) -> SyncPlan:
        """Read-only: snapshot, validate and classify. Cancellable."""
        graph, changes = self.classify_all(model, store)
        findings = validate_network(graph, self.settings, self.reference_points, self.cancel)
        return SyncPlan(graph=graph, findings=findings, changes=changes)

    # ── Cycle ─────────────────────────────────────────────────────────

    def _audit_for(self, store: StoreCollaborator) -> AuditLog:
        # The store doubles as audit sink unless a log was given.
        return self.audit if self.audit is not None else AuditLog(store)

    def sync(
        self,
        model: ModelCollaborator,
        store: StoreCollaborator,
        mode: SyncMode | str = SyncMode.DRY_RUN,
        approve: Approver | None = None,
    ) -> SyncReport:
        """Run one cycle and return its report.

        Raises:
            SourceUnavailable / IncompleteEntity: snapshot or store state
                could not be read; nothing was written.
            AuditUnavailable: the audit sink failed; the cycle stopped.
        """
        mode = SyncMode(mode)
        plan = self.plan(model, store)
        report = SyncReport(mode=mode, findings=count_by_kind(plan.findings))

        if mode == SyncMode.DRY_RUN:
            report.entries = [self._dry_run_entry(c) for c in plan.changes]
            report.finished_at = utcnow()
            return report

        audit = self._audit_for(store)
        audit.record("sync.start", [], detail=f"{len(plan.changes)} entities")

        self._persist_findings(store, plan.findings, audit, report)

        accepted, rejected = propose_writeback(plan.changes, approve)
        accepted_ids, rejected_ids = set(accepted), set(rejected)

        for change in plan.changes:
            if self.cancel is not None and self.cancel.is_set():
                report.entries.append(self._entry(change, Outcome.CANCELLED))
                continue
            with self.locks.hold(change.entity_id) as acquired:
                if not acquired:
                    logger.warning("%s is being reconciled by another cycle", change.entity_id)
                    report.entries.append(self._entry(change, Outcome.BUSY))
                    continue
                stale = self._recheck(store, change, audit)
                if stale is not None:
                    report.entries.append(stale)
                    continue
                report.entries.append(
                    self._apply_change(model, store, change, audit, accepted_ids, rejected_ids)
                )

        report.finished_at = utcnow()
        summary = report.summary()
        audit.record(
            "sync.finish",
            [],
            outcome="ok" if not report.failed else "partial",
            detail=f"applied={len(report.applied)} failed={len(report.failed)} "
                   f"conflicted={len(report.conflicted)}",
        )
        logger.info("Sync finished: %s", summary["entities"])
        return report

    def _apply_change(
        self,
        model: ModelCollaborator,
        store: StoreCollaborator,
        change: PlannedChange,
        audit: AuditLog,
        accepted: set[str],
        rejected: set[str],
    ) -> SyncEntry:
        if change.state == SyncState.IN_SYNC:
            return self._entry(change, Outcome.IN_SYNC)

        if change.state == SyncState.MISSING:
            logger.warning("%s is in the store but not in the model snapshot", change.entity_id)
            return self._entry(change, Outcome.MISSING)

        if change.state == SyncState.CONFLICT:
            return self._report_conflict(change, audit)

        if change.state == SyncState.TO_STORE:
            return self._push(store, change, audit)

        if change.entity_id in accepted:
            return self._writeback(model, store, change, audit)

        self._mark_pending(store, change)
        if change.entity_id in rejected:
            audit.record(
                "writeback.rejected",
                [change.entity_id],
                outcome="rejected",
                before=change.current_fields,
                after=change.proposed_fields,
            )
            logger.info("Write-back of %s rejected by reviewer", change.entity_id)
            return self._entry(change, Outcome.REJECTED)
        return self._entry(change, Outcome.AWAITING_CONFIRMATION, after=change.proposed_fields)

    def _recheck(
        self,
        store: StoreCollaborator,
        change: PlannedChange,
        audit: AuditLog,
    ) -> SyncEntry | None:
        """Re-read the entity's store state under its lock.

        Another cycle may have applied the entity between planning and now.
        Returns a stale entry if the sync record or correction stamps moved,
        None if the plan still holds.
        """
        if change.state not in (SyncState.TO_STORE, SyncState.TO_MODEL, SyncState.CONFLICT):
            return None
        entity_id = change.entity_id
        try:
            record = self._call(store.load_sync_record, entity_id, label=f"reload {entity_id}")
            correction = self._call(store.load_correction, entity_id, label=f"reload {entity_id}")
        except Exception as e:
            logger.error("Could not re-read %s before applying: %s", entity_id, e)
            return self._entry(change, Outcome.FAILED, error=str(e))

        if _stamps(record) == _stamps(change.record) and _revision(correction) == _revision(
            change.correction
        ):
            return None

        state = classify(change.model_entity, record, correction)
        detail = f"planned {change.state.value}, now {state.value}"
        audit.record("stale", [entity_id], outcome="skipped", detail=detail)
        logger.warning("%s changed by another cycle since planning (%s)", entity_id, detail)
        return self._entry(
            change, Outcome.STALE, error=f"changed by another cycle since planning: {detail}"
        )

    # ── Per-entity operations ─────────────────────────────────────────

    def _entry(
        self,
        change: PlannedChange,
        outcome: Outcome,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        error: str = "",
    ) -> SyncEntry:
        return SyncEntry(
            entity_id=change.entity_id,
            entity_type=change.entity_type,
            state=change.state,
            outcome=outcome,
            before=before,
            after=after,
            error=error,
        )

    def _dry_run_entry(self, change: PlannedChange) -> SyncEntry:
        if change.state == SyncState.TO_STORE:
            return self._entry(
                change,
                Outcome.PLANNED,
                before=change.record.fields if change.record else None,
                after=change.current_fields,
            )
        if change.state == SyncState.TO_MODEL:
            return self._entry(
                change, Outcome.PLANNED, before=change.current_fields, after=change.proposed_fields
            )
        if change.state == SyncState.CONFLICT:
            return self._entry(
                change, Outcome.CONFLICT, error=str(WriteConflict(change.entity_id))
            )
        if change.state == SyncState.MISSING:
            return self._entry(change, Outcome.MISSING)
        return self._entry(change, Outcome.IN_SYNC)

    def _persist_findings(
        self,
        store: StoreCollaborator,
        findings: list[Finding],
        audit: AuditLog,
        report: SyncReport,
    ) -> None:
        try:
            previous = self._call(store.load_findings, label="load_findings")
            merged = merge_findings(previous, findings)
            self._call(store.upsert_findings, merged, label="upsert_findings")
        except Exception as e:
            logger.error("Could not persist findings: %s", e)
            report.warnings.append(f"findings not persisted: {e}")
            audit.record("findings", [], outcome="failed", detail=str(e))
            return
        audit.record("findings", [], detail=str(count_by_kind(findings)))

    def _push(
        self,
        store: StoreCollaborator,
        change: PlannedChange,
        audit: AuditLog,
        operation: str = "push",
    ) -> SyncEntry:
        """Copy model values to the store; both stamps become the model stamp."""
        entity = change.model_entity
        before = change.record.fields if change.record else None
        record = SyncRecord(
            entity_id=entity.entity_id,
            entity_type=entity.entity_type,
            model_revision=entity.revision,
            store_revision=entity.revision,
            fields=entity.fields,
        )
        try:
            self._call(store.upsert_entities, [entity], label=f"upsert {entity.entity_id}")
            self._call(store.save_sync_records, [record], label=f"sync record {entity.entity_id}")
            if change.correction is not None:
                self._call(
                    store.clear_corrections, [entity.entity_id], label=f"clear {entity.entity_id}"
                )
        except Exception as e:
            logger.error("Push of %s failed: %s", entity.entity_id, e)
            audit.record(
                operation, [entity.entity_id], outcome="failed",
                before=before, after=entity.fields, detail=str(e),
            )
            return self._entry(change, Outcome.FAILED, before, entity.fields, str(e))

        audit.record(operation, [entity.entity_id], before=before, after=entity.fields)
        logger.info("Pushed %s to store (revision %s)", entity.entity_id, entity.revision)
        return self._entry(change, Outcome.APPLIED, before, entity.fields)

    def _writeback(
        self,
        model: ModelCollaborator,
        store: StoreCollaborator,
        change: PlannedChange,
        audit: AuditLog,
        operation: str = "writeback",
    ) -> SyncEntry:
        """Write a confirmed correction to the model in one atomic call."""
        correction = change.correction
        entity_id = change.entity_id
        before = change.current_fields
        after = change.proposed_fields

        try:
            new_revision = self._call(
                model.write_entity, entity_id, correction.fields, label=f"write {entity_id}"
            )
        except Exception as e:
            failure = WritebackFailure(entity_id, e)
            logger.error("%s", failure)
            audit.record(
                operation, [entity_id], outcome="failed",
                before=before, after=after, detail=str(failure),
            )
            return self._entry(change, Outcome.FAILED, before, after, str(failure))

        model_revision = new_revision or correction.revision
        record = SyncRecord(
            entity_id=entity_id,
            entity_type=change.entity_type,
            model_revision=model_revision,
            store_revision=correction.revision,
            fields=after,
        )
        try:
            self._call(
                store.upsert_entities,
                [Entity(
                    entity_id=entity_id,
                    entity_type=change.entity_type,
                    revision=correction.revision,
                    fields=after,
                )],
                label=f"upsert {entity_id}",
            )
            self._call(store.save_sync_records, [record], label=f"sync record {entity_id}")
            self._call(store.clear_corrections, [entity_id], label=f"clear {entity_id}")
        except Exception as e:
            detail = f"model updated to revision {model_revision}; store bookkeeping failed: {e}"
            logger.error("%s: %s", entity_id, detail)
            audit.record(
                operation, [entity_id], outcome="failed", before=before, after=after, detail=detail
            )
            return self._entry(change, Outcome.FAILED, before, after, detail)

        audit.record(
            operation, [entity_id], before=before, after=after,
            detail=f"model revision {model_revision}",
        )
        logger.info("Wrote correction for %s back to model", entity_id)
        return self._entry(change, Outcome.APPLIED, before, after)

    def _report_conflict(self, change: PlannedChange, audit: AuditLog) -> SyncEntry:
        """Record a conflict. Neither side is touched; stamps stay as they are."""
        conflict = WriteConflict(change.entity_id)
        record = change.record
        audit.record(
            "conflict",
            [change.entity_id],
            outcome="conflict",
            before=change.current_fields,
            after=change.proposed_fields,
            detail=(
                f"model {change.model_entity.revision}, "
                f"store {change.correction.revision if change.correction else '-'}, "
                f"last synced {record.model_revision + '/' + record.store_revision if record else '-'}"
            ),
        )
        logger.warning("%s", conflict)
        return self._entry(
            change, Outcome.CONFLICT, change.current_fields, change.proposed_fields, str(conflict)
        )

    def _mark_pending(self, store: StoreCollaborator, change: PlannedChange) -> None:
        if change.record is None or change.record.pending == PendingDirection.TO_MODEL:
            return
        try:
            self._call(
                store.save_sync_records,
                [change.record.model_copy(update={"pending": PendingDirection.TO_MODEL})],
                label=f"mark pending {change.entity_id}",
            )
        except Exception as e:
            logger.warning("Could not mark %s as pending: %s", change.entity_id, e)

    # ── Manual resolution ─────────────────────────────────────────────

    def resolve_conflict(
        self,
        model: ModelCollaborator,
        store: StoreCollaborator,
        entity_id: str,
        keep: str,
    ) -> SyncEntry:
        """Resolve a Conflict by keeping one side. Explicit human action only.

        Args:
            keep: "model" pushes the model values to the store and drops the
                correction; "store" writes the correction to the model.

        Raises:
            KeyError: unknown entity.
            ValueError: the entity is not in conflict, or `keep` is invalid.
        """
        if keep not in ("model", "store"):
            raise ValueError(f"keep must be 'model' or 'store', got {keep!r}")
        _, changes = self.classify_all(model, store)
        change = next((c for c in changes if c.entity_id == entity_id), None)
        if change is None:
            raise KeyError(f"Unknown entity {entity_id}")
        if change.state != SyncState.CONFLICT:
            raise ValueError(f"{entity_id} is {change.state.value}, not in conflict")

        audit = self._audit_for(store)
        with self.locks.hold(entity_id) as acquired:
            if not acquired:
                return self._entry(change, Outcome.BUSY)
            stale = self._recheck(store, change, audit)
            if stale is not None:
                return stale
            if keep == "model":
                return self._push(store, change, audit, operation="resolve.model")
            return self._writeback(model, store, change, audit, operation="resolve.store")
