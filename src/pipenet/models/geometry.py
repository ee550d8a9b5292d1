"""Geometric primitives for network entities."""

from __future__ import annotations

import math

from pydantic import BaseModel


class Point3D(BaseModel):
    """3D point in model length units."""

    x: float
    y: float
    z: float

    def distance_to(self, other: Point3D) -> float:
        """Euclidean distance to another point."""
        return math.sqrt(
            (self.x - other.x) ** 2
            + (self.y - other.y) ** 2
            + (self.z - other.z) ** 2
        )

    def deviation_from(self, other: Point3D) -> dict[str, float]:
        """Absolute per-axis deviation from another point."""
        return {
            "x": abs(self.x - other.x),
            "y": abs(self.y - other.y),
            "z": abs(self.z - other.z),
        }

    def as_tuple(self) -> tuple[float, float, float]:
        return (self.x, self.y, self.z)

    @classmethod
    def from_tuple(cls, value: tuple[float, float, float] | list[float]) -> Point3D:
        """Build a point from an (x, y, z) sequence."""
        if len(value) != 3:
            raise ValueError(f"Expected 3 coordinates, got {len(value)}")
        return cls(x=value[0], y=value[1], z=value[2])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Point3D):
            return NotImplemented
        return (
            math.isclose(self.x, other.x, abs_tol=1e-9)
            and math.isclose(self.y, other.y, abs_tol=1e-9)
            and math.isclose(self.z, other.z, abs_tol=1e-9)
        )

    def __hash__(self) -> int:
        return hash((round(self.x, 9), round(self.y, 9), round(self.z, 9)))
