"""Tests for model/store reconciliation."""

import threading

import pytest

from pipenet import service
from pipenet.audit import AuditLog
from pipenet.collaborators.json_model import JsonModelFile
from pipenet.errors import AuditUnavailable, CycleCancelled
from pipenet.models import (
    Entity,
    EntityType,
    FindingStatus,
    Outcome,
    PendingDirection,
    SyncMode,
    SyncRecord,
    SyncState,
    entity_to_model,
)
from pipenet.models.document import NetworkDocument
from pipenet.sync import SyncCoordinator, classify, pending_direction, propose_writeback
from pipenet.sync.coordinator import PlannedChange
from pipenet.sync.locks import EntityLockRegistry


# ── Helpers ───────────────────────────────────────────────────────


def _entity(eid="S1", revision="1", **fields) -> Entity:
    return Entity(entity_id=eid, entity_type=EntityType.STRUCTURE, revision=revision, fields=fields)


def _record(eid="S1", model_rev="1", store_rev="1") -> SyncRecord:
    return SyncRecord(
        entity_id=eid, entity_type=EntityType.STRUCTURE,
        model_revision=model_rev, store_revision=store_rev,
    )


def _bump_model(model_path, entity_id, revision, **changes):
    """Edit the model file directly, as the host application would."""
    doc = NetworkDocument.load(model_path)
    target = doc.get_structure(entity_id) or doc.get_pipe(entity_id)
    for name, value in changes.items():
        setattr(target, name, value)
    target.revision = revision
    doc.save(model_path)


class ReloadHook:
    """Store wrapper running `before` once, just ahead of the first sync record re-read."""

    def __init__(self, inner, before):
        self.inner = inner
        self.before = before

    def load_sync_record(self, entity_id):
        if self.before is not None:
            before, self.before = self.before, None
            before()
        return self.inner.load_sync_record(entity_id)

    def __getattr__(self, name):
        return getattr(self.inner, name)


@pytest.fixture
def coordinator(fast_settings, locks) -> SyncCoordinator:
    return SyncCoordinator(fast_settings, locks=locks)


@pytest.fixture
def synced(coordinator, model, store):
    """Model and store after one full push."""
    report = coordinator.sync(model, store, SyncMode.APPLY)
    assert sorted(report.applied) == ["P1", "S1", "S2"]
    return model, store


# ── Classification ────────────────────────────────────────────────


class TestClassify:
    @pytest.mark.parametrize(
        "model_rev, correction_rev, expected",
        [
            ("1", None, SyncState.IN_SYNC),
            ("2", None, SyncState.TO_STORE),
            ("1", "s2", SyncState.TO_MODEL),
            ("2", "s2", SyncState.CONFLICT),
            ("1", "1", SyncState.IN_SYNC),
        ],
    )
    def test_revision_table(self, model_rev, correction_rev, expected):
        correction = _entity(revision=correction_rev) if correction_rev else None
        assert classify(_entity(revision=model_rev), _record(), correction) == expected

    def test_never_synced(self):
        assert classify(_entity(), None) == SyncState.TO_STORE
        assert classify(_entity(), None, _entity(revision="s1")) == SyncState.CONFLICT

    def test_missing_from_model(self):
        assert classify(None, _record()) == SyncState.MISSING

    def test_pending_direction(self):
        assert pending_direction(SyncState.TO_MODEL) == PendingDirection.TO_MODEL
        assert pending_direction(SyncState.IN_SYNC) == PendingDirection.NONE


class TestProposeWriteback:
    def _changes(self):
        return [
            PlannedChange("S1", EntityType.STRUCTURE, SyncState.TO_MODEL),
            PlannedChange("S2", EntityType.STRUCTURE, SyncState.TO_MODEL),
            PlannedChange("P1", EntityType.PIPE, SyncState.TO_STORE),
        ]

    def test_no_reviewer_accepts_nothing(self):
        assert propose_writeback(self._changes(), None) == ([], [])

    def test_id_collection(self):
        assert propose_writeback(self._changes(), {"S2", "P1"}) == (["S2"], ["S1"])

    def test_callable_sees_only_to_model(self):
        seen = []

        def reviewer(proposed):
            seen.extend(c.entity_id for c in proposed)
            return ["S1"]

        assert propose_writeback(self._changes(), reviewer) == (["S1"], ["S2"])
        assert seen == ["S1", "S2"]


# ── Cycles ────────────────────────────────────────────────────────


class TestFirstSync:
    def test_dry_run_writes_nothing(self, coordinator, model, store):
        report = coordinator.sync(model, store, SyncMode.DRY_RUN)
        assert {e.outcome for e in report.entries} == {Outcome.PLANNED}
        assert store.load_sync_state() == []
        assert store.load_entities() == []
        assert store.load_findings() == []
        assert store.load_audit() == []

    def test_push_round_trip(self, coordinator, model, store):
        coordinator.sync(model, store, "apply")
        stored = {e.entity_id: entity_to_model(e) for e in store.load_entities()}
        for structure in model.list_structures():
            assert stored[structure.id] == structure
        for pipe in model.list_pipes():
            assert stored[pipe.id] == pipe
        records = {r.entity_id: r for r in store.load_sync_state()}
        assert records["S1"].fields == model.list_structures()[0].to_entity().fields

    def test_second_cycle_in_sync(self, coordinator, synced):
        model, store = synced
        report = coordinator.sync(model, store, SyncMode.APPLY)
        assert {e.outcome for e in report.entries} == {Outcome.IN_SYNC}

    def test_audit_brackets_cycle(self, synced):
        _, store = synced
        operations = [r.operation for r in store.load_audit()]
        assert operations[0] == "sync.start"
        assert operations[-1] == "sync.finish"
        assert operations.count("push") == 3


class TestModelChange:
    """The model advanced, the store did not: push to the store."""

    def test_push_updates_stamps(self, coordinator, synced, model_path):
        model, store = synced
        _bump_model(model_path, "S1", "2", attributes={"rim": 100.4})

        assert coordinator.plan(model, store).get("S1").state == SyncState.TO_STORE
        report = coordinator.sync(model, store, SyncMode.APPLY)
        assert report.applied == ["S1"]

        record = next(r for r in store.load_sync_state() if r.entity_id == "S1")
        assert record.model_revision == "2"
        assert record.store_revision == "2"
        assert record.fields["attributes"] == {"rim": 100.4}
        assert coordinator.plan(model, store).get("S1").state == SyncState.IN_SYNC

    def test_entry_has_before_and_after(self, coordinator, synced, model_path):
        model, store = synced
        _bump_model(model_path, "S1", "2", label="MH-1")
        entry = coordinator.sync(model, store, SyncMode.APPLY).entry("S1")
        assert entry.before["label"] == "S1"
        assert entry.after["label"] == "MH-1"


class TestStoreCorrection:
    """The store advanced, the model did not: write back once confirmed."""

    @pytest.fixture
    def corrected(self, synced):
        model, store = synced
        store.record_correction(
            Entity(
                entity_id="S2", entity_type=EntityType.STRUCTURE, revision="s2",
                fields={"position": {"x": 10.0, "y": 0.0, "z": -2.5}},
            )
        )
        return model, store

    def test_awaits_confirmation(self, coordinator, corrected, model_path):
        model, store = corrected
        before = model_path.read_text()
        report = coordinator.sync(model, store, SyncMode.APPLY)
        assert report.awaiting_confirmation == ["S2"]
        assert model_path.read_text() == before
        record = next(r for r in store.load_sync_state() if r.entity_id == "S2")
        assert record.pending == PendingDirection.TO_MODEL

    def test_accepted_writeback(self, coordinator, corrected):
        model, store = corrected
        report = coordinator.sync(model, store, SyncMode.APPLY, approve={"S2"})
        assert report.applied == ["S2"]

        s2 = next(s for s in model.list_structures() if s.id == "S2")
        assert s2.position.z == -2.5
        assert s2.revision == "2"

        record = next(r for r in store.load_sync_state() if r.entity_id == "S2")
        assert record.model_revision == "2"
        assert record.store_revision == "s2"
        assert record.pending == PendingDirection.NONE
        assert store.load_pending_corrections() == []
        assert coordinator.plan(model, store).get("S2").state == SyncState.IN_SYNC

    def test_rejected_writeback_stays_pending(self, coordinator, corrected, model_path):
        model, store = corrected
        before = model_path.read_text()
        report = coordinator.sync(model, store, SyncMode.APPLY, approve=lambda proposed: [])
        assert report.entry("S2").outcome == Outcome.REJECTED
        assert model_path.read_text() == before
        assert [c.entity_id for c in store.load_pending_corrections()] == ["S2"]
        assert "writeback.rejected" in [r.operation for r in store.load_audit()]
        assert coordinator.plan(model, store).get("S2").state == SyncState.TO_MODEL

    def test_dry_run_shows_proposal(self, coordinator, corrected):
        model, store = corrected
        entry = coordinator.sync(model, store, SyncMode.DRY_RUN).entry("S2")
        assert entry.outcome == Outcome.PLANNED
        assert entry.before["position"]["z"] == -2.0
        assert entry.after["position"]["z"] == -2.5


class TestConflict:
    """Both sides advanced: report, touch nothing."""

    @pytest.fixture
    def conflicted(self, synced, model_path):
        model, store = synced
        _bump_model(model_path, "S1", "2", label="MH-1-model")
        store.record_correction(
            Entity(entity_id="S1", entity_type=EntityType.STRUCTURE, revision="s2",
                   fields={"label": "MH-1-store"})
        )
        return model, store

    def test_conflict_leaves_both_sides(self, coordinator, conflicted, model_path):
        model, store = conflicted
        model_before = model_path.read_text()
        state_before = store.load_sync_state()
        entities_before = store.load_entities()

        report = coordinator.sync(model, store, SyncMode.APPLY, approve=lambda p: ["S1"])

        entry = report.entry("S1")
        assert entry.state == SyncState.CONFLICT
        assert entry.outcome == Outcome.CONFLICT
        assert "changed on both sides" in entry.error
        assert model_path.read_text() == model_before
        assert store.load_sync_state() == state_before
        assert store.load_entities() == entities_before
        assert [c.entity_id for c in store.load_pending_corrections()] == ["S1"]
        assert "conflict" in [r.operation for r in store.load_audit()]

    def test_conflict_never_becomes_in_sync(self, coordinator, conflicted):
        model, store = conflicted
        for _ in range(3):
            coordinator.sync(model, store, SyncMode.APPLY)
        assert coordinator.plan(model, store).get("S1").state == SyncState.CONFLICT

    def test_resolve_keep_model(self, coordinator, conflicted):
        model, store = conflicted
        entry = coordinator.resolve_conflict(model, store, "S1", keep="model")
        assert entry.outcome == Outcome.APPLIED
        assert store.load_pending_corrections() == []
        stored = next(e for e in store.load_entities() if e.entity_id == "S1")
        assert stored.fields["label"] == "MH-1-model"
        assert coordinator.plan(model, store).get("S1").state == SyncState.IN_SYNC
        assert "resolve.model" in [r.operation for r in store.load_audit()]

    def test_resolve_keep_store(self, coordinator, conflicted):
        model, store = conflicted
        entry = coordinator.resolve_conflict(model, store, "S1", keep="store")
        assert entry.outcome == Outcome.APPLIED
        s1 = next(s for s in model.list_structures() if s.id == "S1")
        assert s1.label == "MH-1-store"
        assert coordinator.plan(model, store).get("S1").state == SyncState.IN_SYNC

    def test_resolve_requires_conflict(self, coordinator, synced):
        model, store = synced
        with pytest.raises(ValueError, match="not in conflict"):
            coordinator.resolve_conflict(model, store, "S1", keep="model")
        with pytest.raises(KeyError):
            coordinator.resolve_conflict(model, store, "S9", keep="model")
        with pytest.raises(ValueError, match="keep must be"):
            coordinator.resolve_conflict(model, store, "S1", keep="both")

    def test_resolve_skips_when_resolved_meanwhile(self, fast_settings, conflicted):
        model, store = conflicted
        other = SyncCoordinator(fast_settings, locks=EntityLockRegistry())
        racing = ReloadHook(
            store, lambda: other.resolve_conflict(model, store, "S1", keep="store")
        )
        mine = SyncCoordinator(fast_settings, locks=EntityLockRegistry())

        entry = mine.resolve_conflict(model, racing, "S1", keep="model")

        assert entry.outcome == Outcome.STALE
        s1 = next(s for s in model.list_structures() if s.id == "S1")
        assert s1.label == "MH-1-store"
        stored = next(e for e in store.load_entities() if e.entity_id == "S1")
        assert stored.fields["label"] == "MH-1-store"
        operations = [r.operation for r in store.load_audit()]
        assert operations.count("resolve.store") == 1
        assert "resolve.model" not in operations


class TestPartialFailure:
    @pytest.fixture
    def two_corrections(self, synced):
        model, store = synced
        for eid, z in (("S1", 0.1), ("S2", -2.1)):
            store.record_correction(
                Entity(entity_id=eid, entity_type=EntityType.STRUCTURE, revision="s2",
                       fields={"position": {"x": 0.0 if eid == "S1" else 10.0, "y": 0.0, "z": z}})
            )
        return model, store

    def test_failure_isolated_to_entity(self, coordinator, two_corrections, flaky_model):
        model, store = two_corrections
        flaky = flaky_model(model, failing_writes={"S1"})
        report = coordinator.sync(flaky, store, SyncMode.APPLY, approve={"S1", "S2"})

        assert report.failed == ["S1"]
        assert report.applied == ["S2"]
        assert "Write for entity S1 failed" in report.errors["S1"]
        # Retried up to the configured attempt count
        assert flaky.write_calls.count("S1") == 2
        assert [c.entity_id for c in store.load_pending_corrections()] == ["S1"]
        finish = store.load_audit()[-1]
        assert finish.operation == "sync.finish"
        assert finish.outcome == "partial"

    def test_retry_applies_failed_subset(self, coordinator, two_corrections, flaky_model):
        model, store = two_corrections
        coordinator.sync(flaky_model(model, failing_writes={"S1"}), store, "apply", approve={"S1", "S2"})

        report = coordinator.sync(model, store, SyncMode.APPLY, approve={"S1"})
        assert report.applied == ["S1"]
        assert report.entry("S2").outcome == Outcome.IN_SYNC


class TestFindingsPersistence:
    @pytest.fixture
    def drifted_model(self, tmp_path, drifted_network):
        path = drifted_network.save(tmp_path / "drifted.json")
        return path, JsonModelFile(path)

    def test_findings_stored_open(self, coordinator, drifted_model, store):
        _, model = drifted_model
        report = coordinator.sync(model, store, SyncMode.APPLY)
        assert report.findings["UnconnectedEnd"] == 1
        stored = store.load_findings()
        assert [(f.key, f.status) for f in stored] == [("UnconnectedEnd:P1:end", FindingStatus.OPEN)]

    def test_fixed_finding_resolved(self, coordinator, drifted_model, store):
        path, model = drifted_model
        coordinator.sync(model, store, SyncMode.APPLY)

        doc = NetworkDocument.load(path)
        doc.get_structure("S2").position.x = 10.0
        doc.get_structure("S2").revision = "2"
        doc.save(path)

        coordinator.sync(model, store, SyncMode.APPLY)
        stored = store.load_findings()
        assert [(f.key, f.status) for f in stored] == [("UnconnectedEnd:P1:end", FindingStatus.RESOLVED)]

    def test_acknowledgement_survives_revalidation(self, coordinator, drifted_model, store):
        _, model = drifted_model
        coordinator.sync(model, store, SyncMode.APPLY)
        store.set_finding_status("UnconnectedEnd:P1:end", FindingStatus.ACKNOWLEDGED)
        coordinator.sync(model, store, SyncMode.APPLY)
        assert store.load_findings()[0].status == FindingStatus.ACKNOWLEDGED


class TestSafety:
    def test_audit_failure_stops_cycle(self, fast_settings, locks, model, store, broken_sink):
        coordinator = SyncCoordinator(fast_settings, audit=AuditLog(broken_sink), locks=locks)
        with pytest.raises(AuditUnavailable):
            coordinator.sync(model, store, SyncMode.APPLY)
        assert store.load_entities() == []
        assert store.load_sync_state() == []

    def test_busy_entity_skipped(self, coordinator, locks, model, store):
        assert locks.try_acquire("S1")
        report = coordinator.sync(model, store, SyncMode.APPLY)
        assert report.entry("S1").outcome == Outcome.BUSY
        assert sorted(report.applied) == ["P1", "S2"]
        locks.release("S1")
        assert coordinator.sync(model, store, SyncMode.APPLY).applied == ["S1"]

    def test_cancelled_before_start(self, fast_settings, locks, model, store):
        cancel = threading.Event()
        cancel.set()
        coordinator = SyncCoordinator(fast_settings, locks=locks, cancel=cancel)
        with pytest.raises(CycleCancelled):
            coordinator.sync(model, store, SyncMode.APPLY)
        assert store.load_audit() == []

    def test_missing_entity_reported(self, coordinator, synced, model_path):
        model, store = synced
        doc = NetworkDocument.load(model_path)
        doc.pipes = []
        doc.save(model_path)
        report = coordinator.sync(model, store, SyncMode.APPLY)
        assert report.entry("P1").outcome == Outcome.MISSING
        assert "P1" in [e.entity_id for e in store.load_entities()]


class TestOverlappingCycles:
    """A second cycle applies entities while the first is still running."""

    @pytest.fixture
    def corrected(self, synced):
        model, store = synced
        store.record_correction(_entity("S2", revision="s2", label="MH-2"))
        return model, store

    def test_writeback_applied_once(self, fast_settings, locks, corrected, flaky_model):
        model, store = corrected
        shared = flaky_model(model)
        first = SyncCoordinator(fast_settings, locks=locks)
        second = SyncCoordinator(fast_settings, locks=locks)
        inner_reports = []

        def review(proposed):
            # The other cycle confirms and writes S2 while this reviewer deliberates
            inner_reports.append(second.sync(shared, store, SyncMode.APPLY, approve={"S2"}))
            return ["S2"]

        report = first.sync(shared, store, SyncMode.APPLY, approve=review)

        assert inner_reports[0].applied == ["S2"]
        assert shared.write_calls == ["S2"]
        assert report.entry("S2").outcome == Outcome.STALE
        assert "changed by another cycle" in report.entry("S2").error
        assert report.applied == []

        s2 = next(s for s in model.list_structures() if s.id == "S2")
        assert s2.revision == "2"
        audit = store.load_audit()
        assert [r.operation for r in audit].count("writeback") == 1
        stale = next(r for r in audit if r.operation == "stale")
        assert stale.entity_ids == ["S2"]
        assert stale.outcome == "skipped"
        assert first.plan(shared, store).get("S2").state == SyncState.IN_SYNC

    def test_push_skipped_after_other_cycle(self, fast_settings, locks, corrected, model_path):
        model, store = corrected
        _bump_model(model_path, "S1", "2", label="MH-1")
        first = SyncCoordinator(fast_settings, locks=locks)
        second = SyncCoordinator(fast_settings, locks=locks)
        inner_reports = []

        def review(proposed):
            inner_reports.append(second.sync(model, store, SyncMode.APPLY))
            return []

        report = first.sync(model, store, SyncMode.APPLY, approve=review)

        assert inner_reports[0].applied == ["S1"]
        assert report.entry("S1").outcome == Outcome.STALE
        # Only the pending flag moved on S2, so the rejection still applies
        assert report.entry("S2").outcome == Outcome.REJECTED
        pushes = [r for r in store.load_audit() if r.operation == "push"]
        assert [r.entity_ids for r in pushes].count(["S1"]) == 2  # first sync + second cycle


class TestService:
    def test_validate(self, model):
        assert service.validate(model) == []

    def test_sync_defaults_to_dry_run(self, model, store, fast_settings):
        report = service.sync(model, store, settings=fast_settings)
        assert report.mode == SyncMode.DRY_RUN
        assert store.load_sync_state() == []
