"""Persistence stores for the idempotency coordinator.

This package provides backing store implementations for idempotency
records. All stores implement the PersistenceStore protocol defined in
base.py.

Available Stores:
    - MemoryPersistenceStore: In-memory storage for a single process
    - SQLAlchemyPersistenceStore: Relational storage for any SQLAlchemy async engine
"""

from idempotent_coordinator.storage.base import PersistenceStore
from idempotent_coordinator.storage.memory import MemoryPersistenceStore
from idempotent_coordinator.storage.sql import SQLAlchemyPersistenceStore, SQLTableOptions

__all__ = [
    "PersistenceStore",
    "MemoryPersistenceStore",
    "SQLAlchemyPersistenceStore",
    "SQLTableOptions",
]
