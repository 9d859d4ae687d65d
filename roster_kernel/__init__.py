"""
roster_kernel -- Infrastructure shared by the roster packages.

Provides the typed exception hierarchy, structured JSON logging, the
injectable clock, and the SQLAlchemy declarative base / engine / session
utilities.

Architecture:
    roster_kernel is the lowest layer.  It MUST NOT import from
    roster_config, and touches roster_batch only through the lazy model
    imports in db/engine.create_tables() and db/immutability.
"""
