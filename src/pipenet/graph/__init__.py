"""Network graph, snapshot reader and geometric indexes."""

from pipenet.graph.network import NetworkGraph
from pipenet.graph.snapshot import load_snapshot
from pipenet.graph.spatial import SpatialGrid
from pipenet.graph.connections import ConnectionIndex, build_connection_index

__all__ = [
    "NetworkGraph",
    "load_snapshot",
    "SpatialGrid",
    "ConnectionIndex",
    "build_connection_index",
]
