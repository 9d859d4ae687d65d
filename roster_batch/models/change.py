"""
ORM models for the change audit trail.

Contract:
    ChangeBatchModel and ChangeLogModel persist change batches and per-field
    change logs.  ChangeLogRevertClaimModel reserves an original log for the
    one revert allowed to undo it.  Batches and logs have ``to_dto()`` /
    ``from_draft()``-style converters so ORM rows never leave the store layer.

Architecture: roster_batch/models. Imports from roster_kernel.db.base only.

Invariants enforced:
    - ``id`` is a monotonic integer on every table.
    - A change log belongs to exactly one batch (``batch_id`` NOT NULL, FK).
    - ``reverted_batch_id`` / ``reverted_log_id`` are self-referencing
      optional foreign keys; a revert never points at a batch/log that
      reverts it.
    - At most one claim per original log (unique index on ``log_id``).
    - Immutability after INSERT is enforced by roster_kernel.db.immutability.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from roster_kernel.db.base import IdentityInteger, TrackedBase

if TYPE_CHECKING:
    from roster_batch.domain.types import ChangeBatch, ChangeLogDraft, ChangeLogEntry


class ChangeBatchModel(TrackedBase):
    """Persistent change batch: one logical unit of attribute edits."""

    __tablename__ = "change_batches"

    __table_args__ = (
        Index("ix_change_batches_status", "status"),
        Index("ix_change_batches_scheduled_for", "scheduled_for"),
        Index("ix_change_batches_created_at", "created_at"),
        Index("ix_change_batches_reverted_batch_id", "reverted_batch_id"),
    )

    status: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    scheduled_for: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    reverted_batch_id: Mapped[int | None] = mapped_column(
        IdentityInteger,
        ForeignKey("change_batches.id"),
        nullable=True,
    )

    logs: Mapped[list["ChangeLogModel"]] = relationship(
        "ChangeLogModel",
        back_populates="batch",
        foreign_keys="ChangeLogModel.batch_id",
        order_by="ChangeLogModel.id",
    )

    def to_dto(self) -> ChangeBatch:
        from roster_batch.domain.types import ChangeBatch, ChangeBatchStatus

        return ChangeBatch(
            batch_id=self.id,
            status=ChangeBatchStatus(self.status),
            created_at=self.created_at,
            description=self.description,
            scheduled_for=self.scheduled_for,
            completed_at=self.completed_at,
            reverted_batch_id=self.reverted_batch_id,
            submitter_id=self.submitter_id,
        )


class ChangeLogModel(TrackedBase):
    """One recorded mutation of a single attribute on a single entity."""

    __tablename__ = "change_logs"

    __table_args__ = (
        Index("ix_change_logs_batch_id", "batch_id"),
        Index("ix_change_logs_entity_attr", "entity_id", "attribute_name"),
        Index("ix_change_logs_reverted_log_id", "reverted_log_id"),
    )

    batch_id: Mapped[int] = mapped_column(
        IdentityInteger,
        ForeignKey("change_batches.id"),
        nullable=False,
    )
    entity_id: Mapped[str] = mapped_column(String(200), nullable=False)
    attribute_name: Mapped[str] = mapped_column(String(200), nullable=False)
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    reverted_log_id: Mapped[int | None] = mapped_column(
        IdentityInteger,
        ForeignKey("change_logs.id"),
        nullable=True,
    )

    batch: Mapped["ChangeBatchModel"] = relationship(
        "ChangeBatchModel",
        back_populates="logs",
        foreign_keys=[batch_id],
    )

    def to_dto(self) -> ChangeLogEntry:
        from roster_batch.domain.types import ChangeLogEntry

        return ChangeLogEntry(
            log_id=self.id,
            batch_id=self.batch_id,
            entity_id=self.entity_id,
            attribute_name=self.attribute_name,
            old_value=self.old_value,
            new_value=self.new_value,
            created_at=self.created_at,
            reverted_log_id=self.reverted_log_id,
        )

    @classmethod
    def from_draft(
        cls,
        draft: ChangeLogDraft,
        batch_id: int,
        created_at: datetime,
        submitter_id: str | None,
    ) -> ChangeLogModel:
        return cls(
            batch_id=batch_id,
            entity_id=draft.entity_id,
            attribute_name=draft.attribute_name,
            old_value=draft.old_value,
            new_value=draft.new_value,
            reverted_log_id=draft.reverted_log_id,
            created_at=created_at,
            submitter_id=submitter_id,
        )


class ChangeLogRevertClaimModel(TrackedBase):
    """Reservation of an original change log by the revert undoing it.

    The unique index on ``log_id`` serializes concurrent reverts of the same
    log: the first claim commits, every later one violates the index.
    Claims of reverts that end ``Failed`` are deleted so the change can be
    reverted again; all other claims are permanent.
    """

    __tablename__ = "change_log_revert_claims"

    __table_args__ = (
        Index("ix_change_log_revert_claims_log_id", "log_id", unique=True),
    )

    log_id: Mapped[int] = mapped_column(
        IdentityInteger,
        ForeignKey("change_logs.id"),
        nullable=False,
    )
