"""
roster_kernel.db -- Declarative base, engine/session utilities, and ORM
immutability listeners.
"""

from roster_kernel.db.base import Base, IdentityBase, TrackedBase
from roster_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)

__all__ = [
    "Base",
    "IdentityBase",
    "TrackedBase",
    "build_engine",
    "create_tables",
    "get_engine",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]
