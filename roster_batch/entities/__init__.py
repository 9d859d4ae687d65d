"""
roster_batch.entities -- EntityStore protocol and implementations.
"""

from roster_batch.entities.base import EntityStore, InMemoryEntityStore
from roster_batch.entities.sql import SqlEntityStore

__all__ = [
    "EntityStore",
    "InMemoryEntityStore",
    "SqlEntityStore",
]
