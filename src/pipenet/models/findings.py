"""Validation findings.

A finding is a detected rule violation, not necessarily an error. Findings
are identified by their key (kind, entity ids, location) so that repeated
validation runs update existing records instead of duplicating them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class FindingKind(str, Enum):
    UNCONNECTED_END = "UnconnectedEnd"
    SLOPE_DISCONTINUITY = "SlopeDiscontinuity"
    COORDINATE_MISMATCH = "CoordinateMismatch"
    DEGENERATE_GEOMETRY = "DegenerateGeometry"


class FindingStatus(str, Enum):
    OPEN = "Open"
    ACKNOWLEDGED = "Acknowledged"
    RESOLVED = "Resolved"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Finding(BaseModel):
    """A single typed rule violation."""

    kind: FindingKind
    severity: Severity = Severity.WARNING
    entity_ids: tuple[str, ...]
    location: str = Field(default="", description="Pipe end for UnconnectedEnd")
    axis: str = Field(default="", description="Deviating axis for CoordinateMismatch")
    deviation: float = Field(description="Numeric deviation, rounded to 1e-9")
    message: str = ""
    details: dict[str, Any] = Field(default_factory=dict)
    first_detected: datetime = Field(default_factory=utcnow)
    status: FindingStatus = FindingStatus.OPEN

    @field_validator("entity_ids")
    @classmethod
    def sorted_ids(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("Finding must reference at least one entity")
        return tuple(sorted(v))

    @field_validator("deviation")
    @classmethod
    def rounded(cls, v: float) -> float:
        return round(v, 9)

    @property
    def key(self) -> str:
        """Identity key, e.g. 'UnconnectedEnd:P1:end' or 'SlopeDiscontinuity:P1,P2'."""
        key = f"{self.kind.value}:{','.join(self.entity_ids)}"
        if self.location:
            key += f":{self.location}"
        return key


def count_by_kind(findings: list[Finding]) -> dict[str, int]:
    """Count findings per kind. Every kind is present, zero or not."""
    counts = {kind.value: 0 for kind in FindingKind}
    for f in findings:
        counts[f.kind.value] += 1
    return counts


def merge_findings(
    previous: list[Finding],
    current: list[Finding],
    now: datetime | None = None,
) -> list[Finding]:
    """Merge a fresh validation run into previously stored findings.

    - keys present in both keep their first-detected time and an
      Acknowledged status; deviation and message are refreshed
    - Resolved findings that reappear are reopened
    - keys no longer detected are marked Resolved (never dropped)
    """
    now = now or utcnow()
    by_key = {f.key: f for f in previous}
    merged: dict[str, Finding] = {}

    for finding in current:
        old = by_key.get(finding.key)
        if old is None:
            merged[finding.key] = finding
            continue
        status = old.status
        if status == FindingStatus.RESOLVED:
            status = FindingStatus.OPEN
        merged[finding.key] = finding.model_copy(
            update={"first_detected": old.first_detected, "status": status}
        )

    for key, old in by_key.items():
        if key in merged:
            continue
        if old.status != FindingStatus.RESOLVED:
            old = old.model_copy(
                update={
                    "status": FindingStatus.RESOLVED,
                    "details": {**old.details, "resolved_at": now.isoformat()},
                }
            )
        merged[key] = old

    return [merged[k] for k in sorted(merged)]
