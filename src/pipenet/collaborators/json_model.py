"""Model collaborator backed by a network JSON document.

Each list call re-reads the file, so every snapshot is point-in-time.
Writes re-read, patch one entity, bump its revision and save.
"""

from __future__ import annotations

import logging
import threading
import uuid
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from pipenet.errors import IncompleteEntity, SourceUnavailable
from pipenet.models.document import NetworkDocument
from pipenet.models.network import Pipe, Structure

logger = logging.getLogger(__name__)


def next_revision(revision: str) -> str:
    """Advance a revision stamp. Numeric stamps count up."""
    if revision.isdigit():
        return str(int(revision) + 1)
    return uuid.uuid4().hex[:12]


class JsonModelFile:
    """Authoritative model stored as a NetworkDocument on disk."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> NetworkDocument:
        try:
            return NetworkDocument.load(self.path)
        except OSError as e:
            raise SourceUnavailable(f"Cannot read model {self.path}: {e}") from e
        except ValidationError as e:
            raise IncompleteEntity(f"Model {self.path} has invalid entities: {e}") from e

    def list_structures(self) -> list[Structure]:
        return self._read().structures

    def list_pipes(self) -> list[Pipe]:
        return self._read().pipes

    def write_entity(self, entity_id: str, fields: dict[str, Any]) -> str | None:
        """Patch one structure or pipe and return its new revision stamp."""
        with self._lock:
            doc = self._read()
            for collection in (doc.structures, doc.pipes):
                for i, current in enumerate(collection):
                    if current.id != entity_id:
                        continue
                    data = {
                        **current.model_dump(mode="json"),
                        **fields,
                        "id": entity_id,
                        "revision": next_revision(current.revision),
                    }
                    collection[i] = type(current).model_validate(data)
                    try:
                        doc.save(self.path)
                    except OSError as e:
                        raise SourceUnavailable(f"Cannot write model {self.path}: {e}") from e
                    logger.info("Wrote %s to model (revision %s)", entity_id, data["revision"])
                    return data["revision"]
        raise KeyError(f"Entity {entity_id} not found in model {self.path}")
