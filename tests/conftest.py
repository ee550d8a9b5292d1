"""Shared fixtures: small networks and collaborator doubles."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from pipenet.collaborators.json_model import JsonModelFile
from pipenet.models.document import NetworkDocument
from pipenet.settings import Settings
from pipenet.store.sqlite import SQLiteReconciliationStore
from pipenet.sync.locks import EntityLockRegistry


# ── Networks ──────────────────────────────────────────────────────


def two_structure_network(**pipe_kwargs: Any) -> NetworkDocument:
    """S1 -> P1 -> S2, slope -0.2 over 10 m."""
    doc = NetworkDocument(name="Two Structures")
    doc.add_structure("S1", (0, 0, 0), category="terminus", revision="1")
    doc.add_structure("S2", (10, 0, -2), category="terminus", revision="1")
    doc.add_pipe("P1", "S1", "S2", slope=-0.2, revision="1", **pipe_kwargs)
    return doc


def chain_network(slope_a: float = -0.02, slope_b: float = -0.10) -> NetworkDocument:
    """S1 -> P1 -> S2 -> P2 -> S3."""
    doc = NetworkDocument(name="Chain")
    doc.add_structure("S1", (0, 0, 0), category="terminus")
    doc.add_structure("S2", (10, 0, -0.2), category="manhole")
    doc.add_structure("S3", (20, 0, -1.2), category="outfall")
    doc.add_pipe("P1", "S1", "S2", slope=slope_a)
    doc.add_pipe("P2", "S2", "S3", slope=slope_b)
    return doc


@pytest.fixture
def clean_network() -> NetworkDocument:
    return two_structure_network()


@pytest.fixture
def drifted_network() -> NetworkDocument:
    """P1's end is drawn 0.5 m short of S2."""
    doc = NetworkDocument(name="Drifted")
    doc.add_structure("S1", (0, 0, 0), category="terminus")
    doc.add_structure("S2", (10.5, 0, -2), category="terminus")
    doc.add_pipe("P1", "S1", "S2", slope=-0.2, end=(10, 0, -2))
    return doc


@pytest.fixture
def slope_break_network() -> NetworkDocument:
    return chain_network()


@pytest.fixture
def make_chain():
    """Factory for S1-P1-S2-P2-S3 chains with chosen slopes."""
    return chain_network


# ── Collaborators ─────────────────────────────────────────────────


@pytest.fixture
def fast_settings() -> Settings:
    """No backoff sleeps, short timeouts."""
    return Settings(max_attempts=2, initial_delay=0.0, max_delay=0.0, call_timeout=5.0)


@pytest.fixture
def model_path(tmp_path: Path, clean_network: NetworkDocument) -> Path:
    return clean_network.save(tmp_path / "network.json")


@pytest.fixture
def model(model_path: Path) -> JsonModelFile:
    return JsonModelFile(model_path)


@pytest.fixture
def store():
    db = SQLiteReconciliationStore()
    yield db
    db.close()


@pytest.fixture
def locks() -> EntityLockRegistry:
    return EntityLockRegistry()


class FlakyModel:
    """Wraps a model; selected writes or reads fail with ConnectionError."""

    def __init__(
        self,
        inner: JsonModelFile,
        failing_writes: set[str] | None = None,
        read_failures: int = 0,
    ) -> None:
        self.inner = inner
        self.failing_writes = failing_writes or set()
        self.read_failures = read_failures
        self.write_calls: list[str] = []

    def _maybe_fail_read(self) -> None:
        if self.read_failures > 0:
            self.read_failures -= 1
            raise ConnectionError("model host unreachable")

    def list_structures(self):
        self._maybe_fail_read()
        return self.inner.list_structures()

    def list_pipes(self):
        self._maybe_fail_read()
        return self.inner.list_pipes()

    def write_entity(self, entity_id, fields):
        self.write_calls.append(entity_id)
        if entity_id in self.failing_writes:
            raise ConnectionError(f"lost connection writing {entity_id}")
        return self.inner.write_entity(entity_id, fields)


class BrokenAuditSink:
    """Audit sink whose disk is always full."""

    def append_audit(self, record):
        raise OSError(28, "No space left on device")

    def load_audit(self, limit=None):
        return []


@pytest.fixture
def flaky_model():
    def make(inner: JsonModelFile, **kwargs: Any) -> FlakyModel:
        return FlakyModel(inner, **kwargs)
    return make


@pytest.fixture
def broken_sink() -> BrokenAuditSink:
    return BrokenAuditSink()
