"""Uniform 3D grid index for tolerance-based point matching.

Points are bucketed on a grid whose cell size equals the match radius, so a
radius query only inspects the 27 cells around the query point instead of
every stored point.
"""

from __future__ import annotations

import itertools
from collections import defaultdict
from typing import Generic, Hashable, TypeVar

import numpy as np

from pipenet.models.geometry import Point3D

K = TypeVar("K", bound=Hashable)

_NEIGHBOR_OFFSETS = list(itertools.product((-1, 0, 1), repeat=3))


class SpatialGrid(Generic[K]):
    """Bucket points by grid cell; query neighbours within a radius."""

    def __init__(self, cell_size: float) -> None:
        if cell_size <= 0:
            raise ValueError("cell_size must be positive")
        self.cell_size = cell_size
        self._keys: list[K] = []
        self._coords = np.empty((0, 3), dtype=float)
        self._cells: dict[tuple[int, int, int], list[int]] = defaultdict(list)

    def __len__(self) -> int:
        return len(self._keys)

    def _cell_of(self, coords: np.ndarray) -> np.ndarray:
        return np.floor(coords / self.cell_size).astype(np.int64)

    def build(self, items: list[tuple[K, Point3D]]) -> SpatialGrid[K]:
        """Index all (key, point) pairs in one pass. Replaces prior content."""
        self._keys = [key for key, _ in items]
        self._coords = np.array(
            [p.as_tuple() for _, p in items], dtype=float
        ).reshape(-1, 3)
        self._cells = defaultdict(list)
        for i, cell in enumerate(self._cell_of(self._coords)):
            self._cells[(int(cell[0]), int(cell[1]), int(cell[2]))].append(i)
        return self

    def query(self, point: Point3D, radius: float | None = None) -> list[tuple[K, float]]:
        """Stored keys within `radius` of `point`, nearest first.

        `radius` defaults to the cell size and may not exceed it.
        """
        radius = self.cell_size if radius is None else radius
        if radius > self.cell_size:
            raise ValueError("query radius cannot exceed the grid cell size")

        target = np.array(point.as_tuple(), dtype=float)
        cx, cy, cz = (int(c) for c in self._cell_of(target))
        candidates: list[int] = []
        for dx, dy, dz in _NEIGHBOR_OFFSETS:
            candidates.extend(self._cells.get((cx + dx, cy + dy, cz + dz), ()))
        if not candidates:
            return []

        idx = np.array(sorted(candidates), dtype=np.int64)
        distances = np.sqrt(((self._coords[idx] - target) ** 2).sum(axis=1))
        hits = [
            (int(i), float(d)) for i, d in zip(idx, distances) if d <= radius
        ]
        hits.sort(key=lambda h: (h[1], h[0]))
        return [(self._keys[i], d) for i, d in hits]
