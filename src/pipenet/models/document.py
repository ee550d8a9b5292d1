"""Serializable network document: the on-disk form of a model snapshot.

Used by the JSON file model collaborator and by tests to assemble small
networks with the same convenience API style as the rest of the models.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from pipenet.models.geometry import Point3D
from pipenet.models.network import Pipe, Structure, StructureCategory


class NetworkDocument(BaseModel):
    """A named collection of structures and pipes."""

    name: str = Field(default="Untitled Network")
    units: str = Field(default="meters")
    structures: list[Structure] = Field(default_factory=list)
    pipes: list[Pipe] = Field(default_factory=list)

    # ── File I/O ──────────────────────────────────────────────────────

    @classmethod
    def load(cls, path: str | Path) -> NetworkDocument:
        """Load a network from a JSON file."""
        path = Path(path)
        return cls.model_validate_json(path.read_text())

    def save(self, path: str | Path) -> Path:
        """Save the network to a JSON file. Creates parent dirs if needed."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2))
        return path

    # ── Lookups ───────────────────────────────────────────────────────

    def get_structure(self, structure_id: str) -> Structure | None:
        return next((s for s in self.structures if s.id == structure_id), None)

    def get_pipe(self, pipe_id: str) -> Pipe | None:
        return next((p for p in self.pipes if p.id == pipe_id), None)

    def _require_structure(self, structure_id: str) -> Structure:
        structure = self.get_structure(structure_id)
        if structure is None:
            available = [s.id for s in self.structures]
            raise ValueError(
                f"Structure '{structure_id}' not found. Available: {available}"
            )
        return structure

    # ── Add elements ──────────────────────────────────────────────────

    def add_structure(
        self,
        structure_id: str,
        position: tuple[float, float, float],
        category: StructureCategory | str = StructureCategory.JUNCTION,
        label: str = "",
        revision: str = "1",
        **attributes: Any,
    ) -> Structure:
        """Add a structure at an (x, y, z) position."""
        if self.get_structure(structure_id) is not None:
            raise ValueError(f"Structure '{structure_id}' already exists")
        structure = Structure(
            id=structure_id,
            label=label,
            position=Point3D.from_tuple(position),
            category=StructureCategory(category),
            attributes=attributes,
            revision=revision,
        )
        self.structures.append(structure)
        return structure

    def add_pipe(
        self,
        pipe_id: str,
        start_structure_id: str,
        end_structure_id: str,
        slope: float = 0.0,
        size: float = 0.3,
        material: str = "PVC",
        start: tuple[float, float, float] | None = None,
        end: tuple[float, float, float] | None = None,
        length: float | None = None,
        label: str = "",
        revision: str = "1",
    ) -> Pipe:
        """Add a pipe between two existing structures.

        Endpoints default to the structure positions. Pass `start` or `end`
        to place an endpoint elsewhere (e.g. to model drawing drift).
        """
        if self.get_pipe(pipe_id) is not None:
            raise ValueError(f"Pipe '{pipe_id}' already exists")
        s1 = self._require_structure(start_structure_id)
        s2 = self._require_structure(end_structure_id)
        pipe = Pipe(
            id=pipe_id,
            label=label,
            start_structure_id=s1.id,
            end_structure_id=s2.id,
            start=Point3D.from_tuple(start) if start is not None else s1.position.model_copy(),
            end=Point3D.from_tuple(end) if end is not None else s2.position.model_copy(),
            size=size,
            material=material,
            slope=slope,
            length=length,
            revision=revision,
        )
        self.pipes.append(pipe)
        return pipe
