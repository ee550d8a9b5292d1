"""Validation engine: run every rule check over one graph snapshot.

The checks are pure and independent. They share a connection index built
once up front and run concurrently on a thread pool; results are merged
and sorted by finding key so output is deterministic.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from functools import partial

from pipenet.errors import CycleCancelled
from pipenet.graph.connections import build_connection_index
from pipenet.graph.network import NetworkGraph
from pipenet.models.findings import Finding, count_by_kind
from pipenet.models.geometry import Point3D
from pipenet.settings import Settings
from pipenet.validators.connectivity import validate_connectivity
from pipenet.validators.coordinates import validate_coordinates
from pipenet.validators.geometry import validate_geometry
from pipenet.validators.slope import validate_slopes

logger = logging.getLogger(__name__)


def validate_network(
    graph: NetworkGraph,
    settings: Settings | None = None,
    reference_points: dict[str, Point3D] | None = None,
    cancel: threading.Event | None = None,
) -> list[Finding]:
    """Run all checks and return findings sorted by key.

    Raises:
        CycleCancelled: `cancel` was set before the results were merged.
    """
    settings = settings or Settings()
    index = build_connection_index(graph, settings.spatial_tolerance)

    checks = {
        "connectivity": partial(validate_connectivity, graph, index, settings),
        "slope": partial(validate_slopes, graph, index, settings),
        "coordinates": partial(validate_coordinates, graph, reference_points or {}, settings),
        "geometry": partial(validate_geometry, graph, settings),
    }

    with ThreadPoolExecutor(
        max_workers=min(settings.workers, len(checks)),
        thread_name_prefix="pipenet-check",
    ) as pool:
        futures = {name: pool.submit(check) for name, check in checks.items()}
        results = {name: future.result() for name, future in futures.items()}

    if cancel is not None and cancel.is_set():
        raise CycleCancelled("Validation cancelled")

    merged: dict[str, Finding] = {}
    for name in checks:
        for finding in results[name]:
            merged.setdefault(finding.key, finding)
    findings = [merged[k] for k in sorted(merged)]

    logger.info("Validation found %d finding(s): %s", len(findings), count_by_kind(findings))
    return findings
