"""
ChangeSelector -- read-only queries over the change audit trail.

Contract:
    Accepts a Session from the caller, runs SELECTs only and returns frozen
    DTOs (``ChangeBatch`` / ``ChangeLogEntry``), never ORM rows.

Architecture: roster_batch/selectors.  Imports from roster_batch.models and
    roster_batch.domain only.

Invariants enforced:
    - Read-only: never calls add/delete/flush/commit.
    - Session ownership stays with the caller.
    - Orderings are total (ties broken by the monotonic id) so repeated
      queries return identical sequences.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from roster_batch.domain.types import ChangeBatch, ChangeBatchStatus, ChangeLogEntry
from roster_batch.models.change import ChangeBatchModel, ChangeLogModel

# Batches that have not reached an outcome the audit history should show.
_NOT_IN_HISTORY = (
    ChangeBatchStatus.SCHEDULED.value,
    ChangeBatchStatus.PENDING_REVERT.value,
)


class ChangeSelector:
    """Queries backing the audit trail views and the revert preconditions."""

    def __init__(self, session: Session):
        self.session = session

    # -------------------------------------------------------------------------
    # Single rows
    # -------------------------------------------------------------------------

    def get_batch(self, batch_id: int) -> ChangeBatch | None:
        model = self.session.get(ChangeBatchModel, batch_id)
        return model.to_dto() if model is not None else None

    def get_log(self, log_id: int) -> ChangeLogEntry | None:
        model = self.session.get(ChangeLogModel, log_id)
        return model.to_dto() if model is not None else None

    # -------------------------------------------------------------------------
    # Batch lists
    # -------------------------------------------------------------------------

    def list_batches(
        self,
        status: ChangeBatchStatus | None = None,
        limit: int | None = None,
    ) -> tuple[ChangeBatch, ...]:
        """Batches newest first, optionally filtered by status."""
        stmt = select(ChangeBatchModel).order_by(
            ChangeBatchModel.created_at.desc(), ChangeBatchModel.id.desc(),
        )
        if status is not None:
            stmt = stmt.where(ChangeBatchModel.status == ChangeBatchStatus(status).value)
        if limit is not None:
            stmt = stmt.limit(limit)
        return tuple(m.to_dto() for m in self.session.execute(stmt).scalars())

    def list_scheduled(self) -> tuple[ChangeBatch, ...]:
        """Scheduled batches, soonest first."""
        stmt = (
            select(ChangeBatchModel)
            .where(ChangeBatchModel.status == ChangeBatchStatus.SCHEDULED.value)
            .order_by(ChangeBatchModel.scheduled_for.asc(), ChangeBatchModel.id.asc())
        )
        return tuple(m.to_dto() for m in self.session.execute(stmt).scalars())

    def list_history(self, limit: int | None = None) -> tuple[ChangeBatch, ...]:
        """Batches with an outcome (not Scheduled, not PendingRevert), newest first."""
        stmt = (
            select(ChangeBatchModel)
            .where(ChangeBatchModel.status.not_in(_NOT_IN_HISTORY))
            .order_by(ChangeBatchModel.created_at.desc(), ChangeBatchModel.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return tuple(m.to_dto() for m in self.session.execute(stmt).scalars())

    def list_due_scheduled(self, as_of: datetime) -> tuple[ChangeBatch, ...]:
        """Scheduled batches whose ``scheduled_for`` is at or before ``as_of``.

        Polled by whatever executes scheduled batches; this package never
        runs them itself.
        """
        stmt = (
            select(ChangeBatchModel)
            .where(
                ChangeBatchModel.status == ChangeBatchStatus.SCHEDULED.value,
                ChangeBatchModel.scheduled_for <= as_of,
            )
            .order_by(ChangeBatchModel.scheduled_for.asc(), ChangeBatchModel.id.asc())
        )
        return tuple(m.to_dto() for m in self.session.execute(stmt).scalars())

    def list_reverts_of_batch(self, batch_id: int) -> tuple[ChangeBatch, ...]:
        stmt = (
            select(ChangeBatchModel)
            .where(ChangeBatchModel.reverted_batch_id == batch_id)
            .order_by(ChangeBatchModel.id.asc())
        )
        return tuple(m.to_dto() for m in self.session.execute(stmt).scalars())

    # -------------------------------------------------------------------------
    # Logs
    # -------------------------------------------------------------------------

    def list_logs(self, batch_id: int) -> tuple[ChangeLogEntry, ...]:
        """Logs of one batch, oldest first."""
        stmt = (
            select(ChangeLogModel)
            .where(ChangeLogModel.batch_id == batch_id)
            .order_by(ChangeLogModel.created_at.asc(), ChangeLogModel.id.asc())
        )
        return tuple(m.to_dto() for m in self.session.execute(stmt).scalars())

    def find_reverts_of(self, log_id: int) -> tuple[ChangeLogEntry, ...]:
        """Every log that records a revert of ``log_id``, failed attempts included."""
        stmt = (
            select(ChangeLogModel)
            .where(ChangeLogModel.reverted_log_id == log_id)
            .order_by(ChangeLogModel.id.asc())
        )
        return tuple(m.to_dto() for m in self.session.execute(stmt).scalars())

    def active_reverts(self, log_ids: Iterable[int]) -> dict[int, int]:
        """Map original log id -> id of the log that reverts it.

        Only reverts whose batch is not ``Failed`` count; a failed attempt
        leaves the original log revertible.
        """
        ids = list(log_ids)
        if not ids:
            return {}
        revert_batch = aliased(ChangeBatchModel)
        stmt = (
            select(ChangeLogModel.reverted_log_id, ChangeLogModel.id)
            .join(revert_batch, revert_batch.id == ChangeLogModel.batch_id)
            .where(
                ChangeLogModel.reverted_log_id.in_(ids),
                revert_batch.status != ChangeBatchStatus.FAILED.value,
            )
            .order_by(ChangeLogModel.id.asc())
        )
        found: dict[int, int] = {}
        for original_id, reverting_id in self.session.execute(stmt):
            found.setdefault(original_id, reverting_id)
        return found
