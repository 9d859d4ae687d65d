"""
Module: roster_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the monotonic integer primary key convention, the type annotation map for
    consistent column types, and the TrackedBase mixin for audit metadata.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from roster_batch or roster_config.

Invariants enforced:
    - Monotonic identifiers: every IdentityBase model has an autoincrementing
      integer primary key, so batch and log ids order by creation.
    - Decimal precision: type_annotation_map maps Python Decimal to
      Numeric(18, 4) for salary / bonus style attributes.
    - Timezone-aware timestamps: datetime maps to DateTime(timezone=True).

Failure modes:
    - IntegrityError if a model INSERTs an explicit, duplicate primary key.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar

from sqlalchemy import BigInteger, Date, DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements an INTEGER PRIMARY KEY column.
IdentityInteger = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - Decimal maps to Numeric(18, 4).
        - datetime maps to DateTime(timezone=True) -- always timezone-aware.
        - date maps to Date.
        - int maps to BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(18, 4),
        datetime: DateTime(timezone=True),
        date: Date(),
        int: BigInteger,
    }


class IdentityBase(Base):
    """
    Abstract base with a monotonic integer primary key.

    Contract:
        ``id`` is assigned by the database on INSERT (IDENTITY / SERIAL on
        PostgreSQL, ROWID alias on SQLite) and is strictly increasing.
    """

    __abstract__ = True

    id: Mapped[int] = mapped_column(
        IdentityInteger,
        primary_key=True,
        autoincrement=True,
    )


class TrackedBase(IdentityBase):
    """
    Abstract base with creation timestamp and submitter tracking.

    Contract:
        ``created_at`` is written by the service layer from the injected
        Clock; the server default only covers rows inserted outside the
        services.  ``created_at`` never changes after INSERT.

        ``submitter_id`` identifies the actor who requested the change.  It is
        owned by the external auth collaborator and may be NULL.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    submitter_id: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )
