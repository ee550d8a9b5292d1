"""Audit records: one per sync operation, finding batch or correction."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from pipenet.models.findings import utcnow


class AuditRecord(BaseModel):
    """An append-only audit entry.

    `sequence` is assigned by the sink on append.
    """

    sequence: int | None = None
    timestamp: datetime = Field(default_factory=utcnow)
    operation: str = Field(description="e.g. 'push', 'writeback', 'conflict', 'findings'")
    entity_ids: list[str] = Field(default_factory=list)
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    outcome: str = "ok"
    detail: str = ""
