"""In-memory network graph: structures (nodes), pipes (edges), adjacency.

The adjacency index maps each structure id to the ids of pipes that declare
it as their start or end structure. It is rebuilt on every snapshot load in
one pass over the pipes.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

from pipenet.errors import IncompleteEntity
from pipenet.models.network import Entity, Pipe, Structure


@dataclass
class NetworkGraph:
    """Point-in-time graph of the network. Treated as read-only once built."""

    structures: dict[str, Structure] = field(default_factory=dict)
    pipes: dict[str, Pipe] = field(default_factory=dict)
    adjacency: dict[str, set[str]] = field(default_factory=dict)

    @classmethod
    def build(cls, structures: list[Structure], pipes: list[Pipe]) -> NetworkGraph:
        """Assemble a graph and its adjacency index.

        Raises:
            IncompleteEntity: duplicate ids, or a pipe referencing a
                structure absent from the same snapshot.
        """
        by_id: dict[str, Structure] = {}
        for s in structures:
            if s.id in by_id:
                raise IncompleteEntity(f"Duplicate structure id {s.id}", [s.id])
            by_id[s.id] = s

        pipes_by_id: dict[str, Pipe] = {}
        adjacency: dict[str, set[str]] = defaultdict(set)
        for s_id in by_id:
            adjacency[s_id] = set()

        for p in pipes:
            if p.id in pipes_by_id or p.id in by_id:
                raise IncompleteEntity(f"Duplicate entity id {p.id}", [p.id])
            missing = [
                sid for sid in (p.start_structure_id, p.end_structure_id)
                if sid not in by_id
            ]
            if missing:
                raise IncompleteEntity(
                    f"Pipe {p.id} references missing structure(s) {', '.join(missing)}",
                    [p.id, *missing],
                )
            pipes_by_id[p.id] = p
            adjacency[p.start_structure_id].add(p.id)
            adjacency[p.end_structure_id].add(p.id)

        return cls(structures=by_id, pipes=pipes_by_id, adjacency=dict(adjacency))

    def incident_pipes(self, structure_id: str) -> set[str]:
        """Ids of pipes declared as starting or ending at a structure."""
        return self.adjacency.get(structure_id, set())

    def pipe_neighbors(self, pipe_id: str) -> set[str]:
        """Pipes sharing a declared structure with the given pipe."""
        pipe = self.pipes[pipe_id]
        neighbors = self.incident_pipes(pipe.start_structure_id) | self.incident_pipes(
            pipe.end_structure_id
        )
        return neighbors - {pipe_id}

    def get(self, entity_id: str) -> Structure | Pipe | None:
        return self.structures.get(entity_id) or self.pipes.get(entity_id)

    def entities(self) -> list[Entity]:
        """All structures and pipes in store form, ordered by id."""
        out = [s.to_entity() for s in self.structures.values()]
        out.extend(p.to_entity() for p in self.pipes.values())
        return sorted(out, key=lambda e: e.entity_id)

    def __len__(self) -> int:
        return len(self.structures) + len(self.pipes)
