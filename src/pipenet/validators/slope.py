"""Slope discontinuity between connected pipes.

For every pair of pipes meeting at a junction, the absolute slope jump is
compared against the threshold. Only jumps strictly greater than the
threshold are reported; a jump exactly at the threshold passes.
"""

from __future__ import annotations

from pipenet.graph.connections import ConnectionIndex
from pipenet.graph.network import NetworkGraph
from pipenet.models.findings import Finding, FindingKind, Severity
from pipenet.settings import Settings
from pipenet.validators.geometry import degenerate_pipe_ids


def slope_jump(slope_a: float, slope_b: float) -> float:
    """|slopeA - slopeB|, rounded so float noise cannot cross the threshold."""
    return round(abs(slope_a - slope_b), 9)


def validate_slopes(
    graph: NetworkGraph,
    index: ConnectionIndex,
    settings: Settings,
) -> list[Finding]:
    """Report pipe pairs at a shared junction whose slopes differ too much.

    Pipes without a connected neighbour never form a pair and are skipped;
    zero-length pipes are excluded.
    """
    findings: list[Finding] = []
    threshold = settings.slope_threshold

    for a, b, junction in index.shared_pairs(exclude=degenerate_pipe_ids(graph, settings)):
        pa, pb = graph.pipes[a], graph.pipes[b]
        jump = slope_jump(pa.slope, pb.slope)
        if jump <= threshold:
            continue
        findings.append(
            Finding(
                kind=FindingKind.SLOPE_DISCONTINUITY,
                severity=Severity.WARNING,
                entity_ids=(a, b),
                deviation=jump,
                message=(
                    f"Slope jump {jump:.4f} between {pa.label} ({pa.slope:+.4f}) "
                    f"and {pb.label} ({pb.slope:+.4f}) exceeds {threshold}"
                ),
                details={"junction": junction},
            )
        )

    return findings
