"""
ChangeBatchStore / ChangeLogStore -- persistence for the change audit trail.

Contract:
    Pure persistence, no business rules.  Every public method runs in its own
    short transaction (``session_scope`` over the injected session factory):
    commit on success, rollback on failure.  Any ``SQLAlchemyError`` is
    re-raised as ``StorageError`` chained to the original.

Architecture: roster_batch/services.  Imports from roster_batch.domain,
    roster_batch.models, roster_batch.selectors and roster_kernel.

Invariants enforced:
    - A batch row committed by ``create`` survives a later failure of
      ``append_many``, so the caller can still force it to ``Failed``.
    - ``append_many`` is all-or-nothing for one call.
    - ``transition`` is a compare-and-set: the UPDATE only matches when the
      current status is one the lifecycle table allows as a source.  Two
      racing transitions cannot both win.
    - ``claim_reverts`` inserts one claim row per original log under a
      unique index, so two racing reverts of the same log cannot both
      claim it.
    - Change logs are never updated; batches only change status and
      ``completed_at`` (see roster_kernel.db.immutability).
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Generator, Iterable, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from roster_batch.domain.lifecycle import sources_for
from roster_batch.domain.types import (
    ChangeBatch,
    ChangeBatchStatus,
    ChangeLogDraft,
    ChangeLogEntry,
)
from roster_batch.models.change import (
    ChangeBatchModel,
    ChangeLogModel,
    ChangeLogRevertClaimModel,
)
from roster_batch.selectors.change_selector import ChangeSelector
from roster_kernel.db.engine import session_scope
from roster_kernel.exceptions import (
    BatchNotFoundError,
    IllegalTransitionError,
    RevertInProgressError,
    StorageError,
)
from roster_kernel.logging_config import get_logger

logger = get_logger("batch.store")


class _TransactionalStore:
    """Shared one-transaction-per-call plumbing."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self, operation: str) -> Generator[Session, None, None]:
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error(
                "change_store_failed",
                extra={"operation": operation, "error": str(exc)},
            )
            raise StorageError(operation, str(exc)) from exc


class ChangeBatchStore(_TransactionalStore):
    """Create, read and transition change batches."""

    def create(
        self,
        status: ChangeBatchStatus,
        description: str,
        created_at: datetime,
        scheduled_for: datetime | None = None,
        completed_at: datetime | None = None,
        reverted_batch_id: int | None = None,
        submitter_id: str | None = None,
    ) -> ChangeBatch:
        with self._transaction("batch.create") as session:
            model = ChangeBatchModel(
                status=ChangeBatchStatus(status).value,
                description=description,
                scheduled_for=scheduled_for,
                completed_at=completed_at,
                reverted_batch_id=reverted_batch_id,
                created_at=created_at,
                submitter_id=submitter_id,
            )
            session.add(model)
            session.flush()
            dto = model.to_dto()

        logger.info(
            "change_batch_created",
            extra={
                "batch_id": dto.batch_id,
                "status": dto.status.value,
                "reverted_batch_id": reverted_batch_id,
            },
        )
        return dto

    def get(self, batch_id: int) -> ChangeBatch | None:
        with self._transaction("batch.get") as session:
            return ChangeSelector(session).get_batch(batch_id)

    def transition(
        self,
        batch_id: int,
        target: ChangeBatchStatus,
        completed_at: datetime | None = None,
        expected: Iterable[ChangeBatchStatus] | None = None,
    ) -> ChangeBatch:
        """Move ``batch_id`` to ``target`` if its current status allows it.

        ``expected`` narrows the legal sources further (e.g. cancel accepts
        only ``Scheduled``).

        Raises:
            BatchNotFoundError: unknown batch.
            IllegalTransitionError: current status is not a legal source.
            StorageError: database failure.
        """
        allowed = sources_for(target)
        if expected is not None:
            allowed = allowed & frozenset(expected)

        values: dict[str, object] = {"status": target.value}
        if completed_at is not None:
            values["completed_at"] = completed_at

        with self._transaction("batch.transition") as session:
            result = session.execute(
                update(ChangeBatchModel)
                .where(
                    ChangeBatchModel.id == batch_id,
                    ChangeBatchModel.status.in_([s.value for s in allowed]),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            model = session.get(ChangeBatchModel, batch_id)
            if model is None:
                raise BatchNotFoundError(batch_id)
            if result.rowcount == 0:
                raise IllegalTransitionError(batch_id, model.status, target.value)
            dto = model.to_dto()

        logger.info(
            "change_batch_transitioned",
            extra={"batch_id": batch_id, "status": target.value},
        )
        return dto

    def update_status(
        self,
        batch_id: int,
        status: ChangeBatchStatus,
        completed_at: datetime | None = None,
    ) -> ChangeBatch:
        """Alias of ``transition`` without a narrowed source set."""
        return self.transition(batch_id, status, completed_at=completed_at)


class ChangeLogStore(_TransactionalStore):
    """Append and read change logs."""

    def append_many(
        self,
        batch_id: int,
        drafts: Sequence[ChangeLogDraft],
        created_at: datetime,
        submitter_id: str | None = None,
    ) -> tuple[ChangeLogEntry, ...]:
        """Persist every draft under ``batch_id`` in one transaction."""
        if not drafts:
            return ()
        with self._transaction("log.append_many") as session:
            models = [
                ChangeLogModel.from_draft(
                    draft,
                    batch_id=batch_id,
                    created_at=created_at,
                    submitter_id=submitter_id,
                )
                for draft in drafts
            ]
            session.add_all(models)
            session.flush()
            entries = tuple(m.to_dto() for m in models)

        logger.info(
            "change_logs_appended",
            extra={"batch_id": batch_id, "log_count": len(entries)},
        )
        return entries

    def get(self, log_id: int) -> ChangeLogEntry | None:
        with self._transaction("log.get") as session:
            return ChangeSelector(session).get_log(log_id)

    def list_by_batch(self, batch_id: int) -> tuple[ChangeLogEntry, ...]:
        with self._transaction("log.list_by_batch") as session:
            return ChangeSelector(session).list_logs(batch_id)

    def active_reverts(self, log_ids: Iterable[int]) -> dict[int, int]:
        """Original log id -> reverting log id, ignoring failed reverts."""
        with self._transaction("log.active_reverts") as session:
            return ChangeSelector(session).active_reverts(log_ids)

    def claim_reverts(
        self,
        log_ids: Iterable[int],
        claimed_at: datetime,
        submitter_id: str | None = None,
    ) -> None:
        """Reserve every log in ``log_ids`` for one revert, all or nothing.

        Raises:
            RevertInProgressError: another revert already holds a claim on
                one of the logs.
            StorageError: database failure.
        """
        ids = list(dict.fromkeys(log_ids))
        if not ids:
            return
        with self._transaction("log.claim_reverts") as session:
            held = session.execute(
                select(ChangeLogRevertClaimModel.log_id)
                .where(ChangeLogRevertClaimModel.log_id.in_(ids))
            ).scalars().all()
            if held:
                raise RevertInProgressError(sorted(held))

            session.add_all([
                ChangeLogRevertClaimModel(
                    log_id=log_id,
                    created_at=claimed_at,
                    submitter_id=submitter_id,
                )
                for log_id in ids
            ])
            try:
                session.flush()
            except IntegrityError as exc:
                # Lost the race between the check and the insert.
                raise RevertInProgressError(ids) from exc

        logger.info("revert_claims_taken", extra={"log_ids": ids})

    def release_reverts(self, log_ids: Iterable[int]) -> int:
        """Drop the claims on ``log_ids`` so the logs can be reverted again."""
        ids = list(log_ids)
        if not ids:
            return 0
        with self._transaction("log.release_reverts") as session:
            result = session.execute(
                delete(ChangeLogRevertClaimModel)
                .where(ChangeLogRevertClaimModel.log_id.in_(ids))
            )
            released = result.rowcount

        logger.info(
            "revert_claims_released",
            extra={"log_ids": ids, "released": released},
        )
        return released
