"""Per-entity in-flight guards.

At most one reconciliation may be in flight per entity id. A cycle that
finds an entity already held skips it and reports it as busy rather than
waiting, so a retry later picks it up.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class EntityLockRegistry:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._held: set[str] = set()

    def try_acquire(self, entity_id: str) -> bool:
        with self._guard:
            if entity_id in self._held:
                return False
            self._held.add(entity_id)
            return True

    def release(self, entity_id: str) -> None:
        with self._guard:
            self._held.discard(entity_id)

    def is_held(self, entity_id: str) -> bool:
        with self._guard:
            return entity_id in self._held

    @contextmanager
    def hold(self, entity_id: str) -> Iterator[bool]:
        """Yield True while holding the entity, False if another cycle has it."""
        acquired = self.try_acquire(entity_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(entity_id)


# Shared by every coordinator in the process unless one is passed explicitly.
DEFAULT_LOCKS = EntityLockRegistry()
