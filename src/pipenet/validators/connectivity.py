"""Pipe endpoint connectivity.

A pipe end must coincide, within the spatial tolerance, with the structure
it declares, or with an adjacent pipe's end that is anchored there. Ends
that do neither are reported as UnconnectedEnd, with the distance to the
declared structure as the deviation. An end that lands on some other
structure is still unconnected; that structure is listed under "touches".
"""

from __future__ import annotations

from pipenet.graph.connections import PIPE_ENDS, ConnectionIndex
from pipenet.graph.network import NetworkGraph
from pipenet.models.findings import Finding, FindingKind, Severity
from pipenet.settings import Settings


def validate_connectivity(
    graph: NetworkGraph,
    index: ConnectionIndex,
    settings: Settings,
) -> list[Finding]:
    """Report every pipe end not joined to its declared structure."""
    findings: list[Finding] = []

    for pid in sorted(graph.pipes):
        pipe = graph.pipes[pid]
        for end in PIPE_ENDS:
            match = index.matches[(pid, end)]
            if match.connected:
                continue
            point = pipe.endpoint(end)
            declared = graph.structures[match.declared]
            details = {"structure_id": declared.id}
            if match.stray_structures:
                details["touches"] = match.stray_structures
            findings.append(
                Finding(
                    kind=FindingKind.UNCONNECTED_END,
                    severity=Severity.ERROR,
                    entity_ids=(pid,),
                    location=end,
                    deviation=match.gap,
                    message=(
                        f"{pipe.label} {end} ({point.x:.3f}, {point.y:.3f}, {point.z:.3f}) "
                        f"has no connection: declared structure {declared.label} "
                        f"is {match.gap:.3f} away (tolerance {settings.spatial_tolerance})"
                    ),
                    details=details,
                )
            )

    return findings
