"""Coordinate mismatch against externally supplied reference points.

Reference points are keyed by entity label (survey points, as-built
records...). Structures are compared by position, pipes by start
position. Each axis has its own tolerance; the axis that exceeds its
tolerance by the most is reported.
"""

from __future__ import annotations

import csv
import json
from pathlib import Path

from pydantic import BaseModel, ValidationError

from pipenet.errors import ConfigError
from pipenet.graph.network import NetworkGraph
from pipenet.models.findings import Finding, FindingKind, Severity
from pipenet.models.geometry import Point3D
from pipenet.settings import Settings


class ReferencePoint(BaseModel):
    label: str
    x: float
    y: float
    z: float

    @property
    def point(self) -> Point3D:
        return Point3D(x=self.x, y=self.y, z=self.z)


def load_reference_points(path: str | Path) -> dict[str, Point3D]:
    """Load reference points from JSON (list of objects) or CSV (label,x,y,z).

    Raises:
        ConfigError: the file is missing, unreadable or malformed.
    """
    path = Path(path)
    try:
        if path.suffix.lower() == ".csv":
            with path.open(newline="") as fh:
                raw = list(csv.DictReader(fh))
        else:
            raw = json.loads(path.read_text())
    except (OSError, UnicodeDecodeError, csv.Error, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read reference points {path}: {e}") from e
    if not isinstance(raw, list):
        raise ConfigError(f"Invalid reference points in {path}: expected a list of points")
    try:
        rows = [ReferencePoint.model_validate(r) for r in raw]
    except ValidationError as e:
        raise ConfigError(f"Invalid reference points in {path}: {e}") from e
    return {r.label: r.point for r in rows}


def validate_coordinates(
    graph: NetworkGraph,
    reference_points: dict[str, Point3D],
    settings: Settings,
) -> list[Finding]:
    findings: list[Finding] = []
    if not reference_points:
        return findings
    tolerances = settings.axis_tolerance.as_dict()

    candidates: list[tuple[str, str, Point3D]] = [
        (s.id, s.label, s.position) for s in graph.structures.values()
    ]
    candidates.extend((p.id, p.label, p.start) for p in graph.pipes.values())

    for entity_id, label, actual in sorted(candidates, key=lambda c: c[0]):
        reference = reference_points.get(label)
        if reference is None:
            continue
        deviations = actual.deviation_from(reference)
        exceeding = {
            axis: dev - tolerances[axis]
            for axis, dev in deviations.items()
            if dev > tolerances[axis]
        }
        if not exceeding:
            continue
        axis = max(exceeding, key=lambda a: (exceeding[a], -"xyz".index(a)))
        findings.append(
            Finding(
                kind=FindingKind.COORDINATE_MISMATCH,
                severity=Severity.WARNING,
                entity_ids=(entity_id,),
                axis=axis,
                deviation=deviations[axis],
                message=(
                    f"{label} deviates {deviations[axis]:.3f} on {axis} from its "
                    f"reference point (tolerance {tolerances[axis]})"
                ),
                details={"deviations": {a: round(d, 9) for a, d in deviations.items()}},
            )
        )

    return findings
