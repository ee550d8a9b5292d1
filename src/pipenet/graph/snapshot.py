"""Model snapshot reader: collaborator -> NetworkGraph.

Read-only. Collaborator calls are retried with backoff; an unreachable
collaborator surfaces as SourceUnavailable, a referentially inconsistent
snapshot as IncompleteEntity.
"""

from __future__ import annotations

import logging

from pipenet.collaborators.base import ModelCollaborator
from pipenet.graph.network import NetworkGraph
from pipenet.retry import RetryConfig, call_with_retry
from pipenet.settings import Settings

logger = logging.getLogger(__name__)


def load_snapshot(
    model: ModelCollaborator,
    settings: Settings | None = None,
    retry: RetryConfig | None = None,
) -> NetworkGraph:
    """Read all structures and pipes from the model into a graph.

    Raises:
        SourceUnavailable: the model could not be read.
        IncompleteEntity: a pipe references a structure not in the snapshot.
    """
    settings = settings or Settings()
    retry = retry or RetryConfig.from_settings(settings)

    structures = call_with_retry(model.list_structures, retry=retry, label="list_structures")
    pipes = call_with_retry(model.list_pipes, retry=retry, label="list_pipes")

    graph = NetworkGraph.build(structures, pipes)
    logger.info(
        "Loaded snapshot: %d structures, %d pipes", len(graph.structures), len(graph.pipes)
    )
    return graph
