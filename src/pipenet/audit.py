"""Append-only audit log.

`AuditLog.append` never fails silently: any sink error is raised as
AuditUnavailable, and the coordinator stops the cycle rather than make an
unaudited write.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any

from pipenet.collaborators.base import AuditSink
from pipenet.errors import AuditUnavailable
from pipenet.models.audit import AuditRecord

logger = logging.getLogger(__name__)


class JsonlAuditSink:
    """Audit sink writing one JSON object per line to a file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _next_sequence(self) -> int:
        if not self.path.exists():
            return 1
        with self.path.open() as fh:
            return sum(1 for line in fh if line.strip()) + 1

    def append_audit(self, record: AuditRecord) -> int:
        with self._lock:
            sequence = self._next_sequence()
            line = record.model_copy(update={"sequence": sequence}).model_dump_json()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a") as fh:
                fh.write(line + "\n")
                fh.flush()
            return sequence

    def load_audit(self, limit: int | None = None) -> list[AuditRecord]:
        if not self.path.exists():
            return []
        with self.path.open() as fh:
            records = [AuditRecord.model_validate_json(line) for line in fh if line.strip()]
        return records[-limit:] if limit else records


class AuditLog:
    """Front for an audit sink that turns sink failures into AuditUnavailable."""

    def __init__(self, sink: AuditSink) -> None:
        self.sink = sink

    def append(self, record: AuditRecord) -> AuditRecord:
        try:
            sequence = self.sink.append_audit(record)
        except (OSError, sqlite3.Error, ValueError) as e:
            logger.error("Audit sink rejected %s for %s: %s", record.operation, record.entity_ids, e)
            raise AuditUnavailable(f"Audit log unavailable: {e}") from e
        return record.model_copy(update={"sequence": sequence})

    def record(
        self,
        operation: str,
        entity_ids: list[str],
        outcome: str = "ok",
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        detail: str = "",
    ) -> AuditRecord:
        """Build and append a record in one call."""
        return self.append(
            AuditRecord(
                operation=operation,
                entity_ids=entity_ids,
                outcome=outcome,
                before=before,
                after=after,
                detail=detail,
            )
        )

    def entries(self, limit: int | None = None) -> list[AuditRecord]:
        return self.sink.load_audit(limit)


def dump_records(records: list[AuditRecord]) -> list[dict[str, Any]]:
    return [r.model_dump(mode="json") for r in records]
