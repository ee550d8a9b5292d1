"""Reconciliation store implementations."""

from pipenet.store.sqlite import SQLiteReconciliationStore

__all__ = ["SQLiteReconciliationStore"]
