"""Degenerate geometry: zero-length pipes.

Zero-length pipes have no meaningful slope, so they are excluded from the
slope check and reported here instead.
"""

from __future__ import annotations

from pipenet.graph.network import NetworkGraph
from pipenet.models.findings import Finding, FindingKind, Severity
from pipenet.settings import Settings


def degenerate_pipe_ids(graph: NetworkGraph, settings: Settings) -> set[str]:
    """Ids of pipes whose length is at or below the degenerate threshold."""
    return {
        pid for pid, pipe in graph.pipes.items()
        if pipe.effective_length <= settings.degenerate_length
    }


def validate_geometry(graph: NetworkGraph, settings: Settings) -> list[Finding]:
    findings: list[Finding] = []
    for pid in sorted(degenerate_pipe_ids(graph, settings)):
        pipe = graph.pipes[pid]
        findings.append(
            Finding(
                kind=FindingKind.DEGENERATE_GEOMETRY,
                severity=Severity.WARNING,
                entity_ids=(pid,),
                deviation=pipe.effective_length,
                message=f"{pipe.label} has zero length; excluded from slope checks",
            )
        )
    return findings
