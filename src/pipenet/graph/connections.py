"""Geometric connection index over pipe endpoints.

A pipe end is "connected" when it lies within tolerance of the structure it
declares, or of the end of an adjacent pipe (one sharing that declared
structure) which is itself anchored at the structure. Lying on some other
structure, or meeting a pipe end that has drifted away with it, does not
count.

Connected ends are grouped into junctions by declared structure. The index
is derived once from a read-only graph and shared by the validators, so
they can run in parallel without rebuilding it.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from itertools import combinations

from pipenet.graph.network import NetworkGraph
from pipenet.graph.spatial import SpatialGrid

PipeEnd = tuple[str, str]  # (pipe id, "start" | "end")

PIPE_ENDS = ("start", "end")


@dataclass
class EndMatch:
    """How a pipe endpoint relates to its declared structure.

    `structures` lists every structure within tolerance, declared or not;
    `pipe_ends` only the anchored ends of adjacent pipes at the declared
    structure.
    """

    pipe_end: PipeEnd
    declared: str
    gap: float
    anchored: bool
    structures: list[tuple[str, float]] = field(default_factory=list)
    pipe_ends: list[tuple[PipeEnd, float]] = field(default_factory=list)

    @property
    def connected(self) -> bool:
        return self.anchored or bool(self.pipe_ends)

    @property
    def stray_structures(self) -> list[str]:
        """Structures the end touches other than the one it declares."""
        return [sid for sid, _ in self.structures if sid != self.declared]


@dataclass
class ConnectionIndex:
    tolerance: float
    matches: dict[PipeEnd, EndMatch]
    junctions: dict[str, list[PipeEnd]]
    junction_of: dict[PipeEnd, str]

    def is_connected(self, pipe_end: PipeEnd) -> bool:
        return self.matches[pipe_end].connected

    def shared_pairs(self, exclude: set[str] | None = None) -> list[tuple[str, str, str]]:
        """(pipe a, pipe b, junction) for every pipe pair meeting at a junction.

        Each pair is listed once, at its first junction in sorted order.
        """
        exclude = exclude or set()
        seen: set[tuple[str, str]] = set()
        pairs: list[tuple[str, str, str]] = []
        for junction in sorted(self.junctions):
            pipe_ids = sorted({pid for pid, _ in self.junctions[junction]} - exclude)
            for a, b in combinations(pipe_ids, 2):
                if (a, b) in seen:
                    continue
                seen.add((a, b))
                pairs.append((a, b, junction))
        return pairs


def build_connection_index(graph: NetworkGraph, tolerance: float) -> ConnectionIndex:
    """Match every pipe endpoint against its declared structure and neighbours."""
    items: list[tuple[tuple, object]] = []
    for sid in sorted(graph.structures):
        items.append((("structure", sid), graph.structures[sid].position))
    for pid in sorted(graph.pipes):
        pipe = graph.pipes[pid]
        for end in PIPE_ENDS:
            items.append((("pipe", pid, end), pipe.endpoint(end)))
    grid: SpatialGrid[tuple] = SpatialGrid(tolerance).build(items)

    matches: dict[PipeEnd, EndMatch] = {}
    for pid in sorted(graph.pipes):
        pipe = graph.pipes[pid]
        for end in PIPE_ENDS:
            declared = pipe.structure_for(end)
            gap = pipe.endpoint(end).distance_to(graph.structures[declared].position)
            matches[(pid, end)] = EndMatch(
                pipe_end=(pid, end),
                declared=declared,
                gap=gap,
                anchored=gap <= tolerance,
            )

    for pid in sorted(graph.pipes):
        pipe = graph.pipes[pid]
        neighbors = graph.pipe_neighbors(pid)
        for end in PIPE_ENDS:
            match = matches[(pid, end)]
            for key, distance in grid.query(pipe.endpoint(end), tolerance):
                if key[0] == "structure":
                    match.structures.append((key[1], distance))
                    continue
                other = matches[(key[1], key[2])]
                if key[1] in neighbors and other.declared == match.declared and other.anchored:
                    match.pipe_ends.append((other.pipe_end, distance))

    junctions: dict[str, list[PipeEnd]] = defaultdict(list)
    junction_of: dict[PipeEnd, str] = {}
    for pipe_end, match in matches.items():
        if not match.connected:
            continue
        junction = f"structure:{match.declared}"
        junctions[junction].append(pipe_end)
        junction_of[pipe_end] = junction

    return ConnectionIndex(
        tolerance=tolerance,
        matches=matches,
        junctions={k: sorted(v) for k, v in junctions.items()},
        junction_of=junction_of,
    )
