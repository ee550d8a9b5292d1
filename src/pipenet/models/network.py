"""Network entities: structures (nodes) and pipes (edges).

Identifiers are opaque handles assigned by the model collaborator and are
stable across snapshots. Revision stamps are opaque strings: an entity has
"changed" when its stamp differs from the last-synced one.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from pipenet.models.geometry import Point3D


class EntityType(str, Enum):
    """Kind of network entity tracked by the reconciliation store."""

    STRUCTURE = "structure"
    PIPE = "pipe"


class StructureCategory(str, Enum):
    """Structure function within the network."""

    JUNCTION = "junction"
    TERMINUS = "terminus"
    MANHOLE = "manhole"
    INLET = "inlet"
    OUTFALL = "outfall"
    OTHER = "other"


class Entity(BaseModel):
    """Store-side representation of a structure or pipe.

    `fields` holds every attribute except the id and revision stamp, in
    JSON-compatible form, so that a push followed by a load returns
    identical values.
    """

    entity_id: str
    entity_type: EntityType
    revision: str
    fields: dict[str, Any] = Field(default_factory=dict)


class Structure(BaseModel):
    """A network node: junction, manhole, inlet, outfall..."""

    id: str = Field(description="Stable collaborator handle")
    label: str = Field(default="", description="Human label, keys reference points")
    position: Point3D
    category: StructureCategory = StructureCategory.JUNCTION
    attributes: dict[str, Any] = Field(default_factory=dict)
    revision: str = Field(default="0", description="Source-of-truth revision stamp")

    @model_validator(mode="after")
    def default_label(self) -> Structure:
        if not self.label:
            self.label = self.id
        return self

    def to_entity(self) -> Entity:
        return Entity(
            entity_id=self.id,
            entity_type=EntityType.STRUCTURE,
            revision=self.revision,
            fields=self.model_dump(mode="json", exclude={"id", "revision"}),
        )


class Pipe(BaseModel):
    """A network edge between two structures.

    Start/end positions are denormalized from the structures so endpoint
    tolerance checks work even when the structure linkage is intact.
    Slope is signed rise over run.
    """

    id: str = Field(description="Stable collaborator handle")
    label: str = ""
    start_structure_id: str
    end_structure_id: str
    start: Point3D
    end: Point3D
    size: float = Field(gt=0, description="Nominal size (diameter)")
    material: str = ""
    slope: float = 0.0
    length: float | None = Field(
        default=None, ge=0, description="Declared length; geometric length when omitted"
    )
    revision: str = "0"

    @model_validator(mode="after")
    def default_label(self) -> Pipe:
        if not self.label:
            self.label = self.id
        return self

    @property
    def effective_length(self) -> float:
        """Declared length, or the 3D distance between start and end."""
        if self.length is not None:
            return self.length
        return self.start.distance_to(self.end)

    def endpoint(self, end: str) -> Point3D:
        """Position of the "start" or "end" of the pipe."""
        if end == "start":
            return self.start
        if end == "end":
            return self.end
        raise ValueError(f"Unknown pipe end '{end}'")

    def structure_for(self, end: str) -> str:
        """Declared structure id at the "start" or "end" of the pipe."""
        return self.start_structure_id if end == "start" else self.end_structure_id

    def to_entity(self) -> Entity:
        return Entity(
            entity_id=self.id,
            entity_type=EntityType.PIPE,
            revision=self.revision,
            fields=self.model_dump(mode="json", exclude={"id", "revision"}),
        )


def entity_to_model(entity: Entity) -> Structure | Pipe:
    """Rebuild a Structure or Pipe from its store representation."""
    data = {**entity.fields, "id": entity.entity_id, "revision": entity.revision}
    if entity.entity_type == EntityType.STRUCTURE:
        return Structure.model_validate(data)
    return Pipe.model_validate(data)
