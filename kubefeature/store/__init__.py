"""Ledger persistence backends."""

from kubefeature.store.base import InMemoryStateStore, StateStore
from kubefeature.store.sqlite import SQLiteStateStore

__all__ = ["InMemoryStateStore", "SQLiteStateStore", "StateStore"]
