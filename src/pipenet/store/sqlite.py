"""SQLite-backed reconciliation store.

Tables:
    entities    last pushed values per entity, keyed by entity_id
    sync_state  last-synced revision stamps and values per entity
    corrections store-side edits awaiting write-back to the model
    findings    validation findings keyed by finding key
    audit       append-only audit log

Writes are transactional upserts keyed by id and serialized by a lock, so
two cycles touching the same entity cannot lose an update.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

from pipenet.models.audit import AuditRecord
from pipenet.models.findings import Finding, FindingStatus, utcnow
from pipenet.models.network import Entity, EntityType
from pipenet.models.sync import PendingDirection, SyncRecord

SCHEMA = """
CREATE TABLE IF NOT EXISTS entities (
    entity_id   TEXT PRIMARY KEY,
    entity_type TEXT NOT NULL,
    revision    TEXT NOT NULL,
    fields      TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS sync_state (
    entity_id       TEXT PRIMARY KEY,
    entity_type     TEXT NOT NULL,
    model_revision  TEXT NOT NULL,
    store_revision  TEXT NOT NULL,
    pending         TEXT NOT NULL,
    fields          TEXT NOT NULL,
    synced_at       TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS corrections (
    entity_id   TEXT PRIMARY KEY,
    entity_type TEXT NOT NULL,
    revision    TEXT NOT NULL,
    fields      TEXT NOT NULL,
    authored_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS findings (
    key     TEXT PRIMARY KEY,
    kind    TEXT NOT NULL,
    status  TEXT NOT NULL,
    data    TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS audit (
    sequence    INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp   TEXT NOT NULL,
    operation   TEXT NOT NULL,
    entity_ids  TEXT NOT NULL,
    before      TEXT,
    after       TEXT,
    outcome     TEXT NOT NULL,
    detail      TEXT NOT NULL
);
"""


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True)


def _loads_optional(value: str | None) -> Any:
    return None if value is None else json.loads(value)


def _sync_record(r: sqlite3.Row) -> SyncRecord:
    return SyncRecord(
        entity_id=r["entity_id"],
        entity_type=EntityType(r["entity_type"]),
        model_revision=r["model_revision"],
        store_revision=r["store_revision"],
        pending=PendingDirection(r["pending"]),
        fields=json.loads(r["fields"]),
        synced_at=r["synced_at"],
    )


def _entity(r: sqlite3.Row) -> Entity:
    return Entity(
        entity_id=r["entity_id"],
        entity_type=EntityType(r["entity_type"]),
        revision=r["revision"],
        fields=json.loads(r["fields"]),
    )


class SQLiteReconciliationStore:
    """Store collaborator and audit sink on a single SQLite database."""

    def __init__(self, path: str | Path = ":memory:") -> None:
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn.executescript(SCHEMA)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> SQLiteReconciliationStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _execute_many(self, sql: str, rows: list[tuple]) -> None:
        if not rows:
            return
        with self._lock:
            with self._conn:
                self._conn.executemany(sql, rows)

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    # ── Sync state ────────────────────────────────────────────────────

    def load_sync_state(self) -> list[SyncRecord]:
        rows = self._query("SELECT * FROM sync_state ORDER BY entity_id")
        return [_sync_record(r) for r in rows]

    def load_sync_record(self, entity_id: str) -> SyncRecord | None:
        rows = self._query("SELECT * FROM sync_state WHERE entity_id = ?", (entity_id,))
        return _sync_record(rows[0]) if rows else None

    def save_sync_records(self, records: list[SyncRecord]) -> None:
        self._execute_many(
            """
            INSERT INTO sync_state
                (entity_id, entity_type, model_revision, store_revision, pending, fields, synced_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(entity_id) DO UPDATE SET
                entity_type = excluded.entity_type,
                model_revision = excluded.model_revision,
                store_revision = excluded.store_revision,
                pending = excluded.pending,
                fields = excluded.fields,
                synced_at = excluded.synced_at
            """,
            [
                (
                    r.entity_id,
                    r.entity_type.value,
                    r.model_revision,
                    r.store_revision,
                    r.pending.value,
                    _dumps(r.fields),
                    r.synced_at.isoformat(),
                )
                for r in records
            ],
        )

    # ── Entities ──────────────────────────────────────────────────────

    def upsert_entities(self, entities: list[Entity]) -> None:
        now = utcnow().isoformat()
        self._execute_many(
            """
            INSERT INTO entities (entity_id, entity_type, revision, fields, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(entity_id) DO UPDATE SET
                entity_type = excluded.entity_type,
                revision = excluded.revision,
                fields = excluded.fields,
                updated_at = excluded.updated_at
            """,
            [
                (e.entity_id, e.entity_type.value, e.revision, _dumps(e.fields), now)
                for e in entities
            ],
        )

    def load_entities(self) -> list[Entity]:
        rows = self._query("SELECT * FROM entities ORDER BY entity_id")
        return [_entity(r) for r in rows]

    # ── Corrections ───────────────────────────────────────────────────

    def record_correction(self, entity: Entity) -> None:
        """Store an externally authored edit for later write-back."""
        self._execute_many(
            """
            INSERT INTO corrections (entity_id, entity_type, revision, fields, authored_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(entity_id) DO UPDATE SET
                entity_type = excluded.entity_type,
                revision = excluded.revision,
                fields = excluded.fields,
                authored_at = excluded.authored_at
            """,
            [(
                entity.entity_id,
                entity.entity_type.value,
                entity.revision,
                _dumps(entity.fields),
                utcnow().isoformat(),
            )],
        )

    def load_pending_corrections(self) -> list[Entity]:
        rows = self._query("SELECT * FROM corrections ORDER BY entity_id")
        return [_entity(r) for r in rows]

    def load_correction(self, entity_id: str) -> Entity | None:
        rows = self._query("SELECT * FROM corrections WHERE entity_id = ?", (entity_id,))
        return _entity(rows[0]) if rows else None

    def clear_corrections(self, entity_ids: list[str]) -> None:
        self._execute_many(
            "DELETE FROM corrections WHERE entity_id = ?",
            [(eid,) for eid in entity_ids],
        )

    # ── Findings ──────────────────────────────────────────────────────

    def upsert_findings(self, findings: list[Finding]) -> None:
        self._execute_many(
            """
            INSERT INTO findings (key, kind, status, data) VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                kind = excluded.kind,
                status = excluded.status,
                data = excluded.data
            """,
            [(f.key, f.kind.value, f.status.value, f.model_dump_json()) for f in findings],
        )

    def load_findings(self, status: FindingStatus | None = None) -> list[Finding]:
        if status is None:
            rows = self._query("SELECT * FROM findings ORDER BY key")
        else:
            rows = self._query(
                "SELECT * FROM findings WHERE status = ? ORDER BY key", (status.value,)
            )
        return [
            Finding.model_validate_json(r["data"]).model_copy(
                update={"status": FindingStatus(r["status"])}
            )
            for r in rows
        ]

    def set_finding_status(self, key: str, status: FindingStatus) -> Finding:
        """Acknowledge or resolve a finding by key.

        Raises:
            KeyError: no finding with this key.
        """
        with self._lock:
            rows = self._query("SELECT data FROM findings WHERE key = ?", (key,))
            if not rows:
                raise KeyError(f"No finding with key {key}")
            finding = Finding.model_validate_json(rows[0]["data"]).model_copy(
                update={"status": status}
            )
            self.upsert_findings([finding])
        return finding

    # ── Audit ─────────────────────────────────────────────────────────

    def append_audit(self, record: AuditRecord) -> int:
        with self._lock:
            with self._conn:
                cur = self._conn.execute(
                    """
                    INSERT INTO audit
                        (timestamp, operation, entity_ids, before, after, outcome, detail)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.timestamp.isoformat(),
                        record.operation,
                        _dumps(record.entity_ids),
                        None if record.before is None else _dumps(record.before),
                        None if record.after is None else _dumps(record.after),
                        record.outcome,
                        record.detail,
                    ),
                )
            return int(cur.lastrowid)

    def load_audit(self, limit: int | None = None) -> list[AuditRecord]:
        sql = "SELECT * FROM audit ORDER BY sequence"
        params: tuple = ()
        if limit is not None:
            sql = "SELECT * FROM (SELECT * FROM audit ORDER BY sequence DESC LIMIT ?) ORDER BY sequence"
            params = (limit,)
        rows = self._query(sql, params)
        return [
            AuditRecord(
                sequence=r["sequence"],
                timestamp=r["timestamp"],
                operation=r["operation"],
                entity_ids=json.loads(r["entity_ids"]),
                before=_loads_optional(r["before"]),
                after=_loads_optional(r["after"]),
                outcome=r["outcome"],
                detail=r["detail"],
            )
            for r in rows
        ]
