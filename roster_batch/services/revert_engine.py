"""
RevertEngine -- applies the inverse of recorded changes.

Contract:
    - ``revert_batch(batch_id)`` undoes every not-yet-reverted log of a
      completed batch under a new revert batch, then marks the original
      ``Reverted``.
    - ``revert_log(log_id)`` undoes exactly one log under its own revert
      batch and leaves the original batch status alone.

Architecture: roster_batch/services.  Same collaborators as ApplyEngine plus
    read access to batches and logs through the change stores.

Invariants enforced:
    - Preconditions are checked before any row is written.
    - A revert log swaps old/new of the original and points at it through
      ``reverted_log_id``; a whole-batch revert batch points at the original
      through ``reverted_batch_id``.
    - Each original log is reverted at most once.  The logs are claimed
      (``ChangeLogStore.claim_reverts``) before any entity write, so of two
      concurrent reverts of the same log only one proceeds.  A revert that
      ends ``Failed`` releases its claims, so the change can be retried.
    - Inverse writes are grouped per entity and settled like applies.
      Failed writes make a whole-batch revert ``CompletedWithErrors``; the
      one write of a single-log revert failing makes it ``Failed``.
    - A storage failure after the revert batch exists (log insert or final
      status update) forces the revert batch to ``Failed``, leaves the
      original batch untouched and propagates ``StorageError``.

Decoding:
    Stored text is decoded with the attribute's declared kind when the
    attribute dictionary knows it, and with the heuristic otherwise.
"""

from __future__ import annotations

from functools import partial
from typing import Any, Sequence

from roster_batch.domain.codec import decode_as
from roster_batch.domain.lifecycle import aggregate_status
from roster_batch.domain.types import (
    REVERTIBLE_STATUSES,
    ChangeBatch,
    ChangeBatchStatus,
    ChangeLogDraft,
    ChangeLogEntry,
    EntityWriteOutcome,
    RevertOutcome,
)
from roster_batch.entities.base import EntityStore
from roster_batch.services.apply_engine import outcomes_from
from roster_batch.services.change_store import ChangeBatchStore, ChangeLogStore
from roster_batch.services.fanout import settle_all
from roster_batch.services.lifecycle import BatchLifecycleController
from roster_config.schema import AttributeDictionary, EngineSettings
from roster_kernel.domain.clock import Clock, SystemClock
from roster_kernel.exceptions import (
    BatchNotFoundError,
    BatchNotRevertibleError,
    ChangeLogNotFoundError,
    IllegalTransitionError,
    LogAlreadyRevertedError,
    LogNotRevertibleError,
    NoLogsToRevertError,
    StorageError,
)
from roster_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.revert")

# Batches whose logs never turned into entity writes.
_NEVER_EXECUTED = frozenset({
    ChangeBatchStatus.SCHEDULED,
    ChangeBatchStatus.CANCELLED,
})


class RevertEngine:
    """Whole-batch and single-log reverts."""

    def __init__(
        self,
        entity_store: EntityStore,
        lifecycle: BatchLifecycleController,
        batch_store: ChangeBatchStore,
        log_store: ChangeLogStore,
        attributes: AttributeDictionary,
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._entities = entity_store
        self._lifecycle = lifecycle
        self._batches = batch_store
        self._logs = log_store
        self._attributes = attributes
        self._settings = settings or EngineSettings()
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Whole batch
    # -------------------------------------------------------------------------

    def revert_batch(
        self,
        batch_id: int,
        submitter_id: str | None = None,
    ) -> RevertOutcome:
        """Revert every remaining change of a Completed* batch.

        Raises:
            BatchNotFoundError: unknown batch.
            BatchNotRevertibleError: wrong status, or nothing left to revert.
            NoLogsToRevertError: the batch has no change logs.
            RevertInProgressError: a concurrent revert claimed one of its logs.
            StorageError: persistence failure.
        """
        original = self._batches.get(batch_id)
        if original is None:
            raise BatchNotFoundError(batch_id)
        if original.status not in REVERTIBLE_STATUSES:
            raise BatchNotRevertibleError(batch_id, original.status.value)

        logs = self._logs.list_by_batch(batch_id)
        if not logs:
            raise NoLogsToRevertError(batch_id)

        already = self._logs.active_reverts(log.log_id for log in logs)
        pending = [log for log in logs if log.log_id not in already]
        if not pending:
            raise BatchNotRevertibleError(
                batch_id,
                original.status.value,
                reason="every change log has already been reverted",
            )

        description = f"Revert of Batch #{batch_id}: {original.description}"
        revert_batch = self._open_claimed(
            pending,
            description,
            reverted_batch_id=batch_id,
            submitter_id=submitter_id,
        )

        with LogContext.bind(batch_id=str(revert_batch.batch_id)):
            status, outcomes = self._apply_inverse(revert_batch, pending, submitter_id)
            self._annotate_original(batch_id)

            logger.info(
                "revert_batch_completed",
                extra={
                    "revert_batch_id": revert_batch.batch_id,
                    "original_batch_id": batch_id,
                    "status": status.value,
                    "reverted_logs": len(pending),
                    "skipped_logs": len(already),
                },
            )

        return RevertOutcome(
            revert_batch_id=revert_batch.batch_id,
            status=status,
            reverted_log_ids=tuple(log.log_id for log in pending),
            original_batch_id=batch_id,
            entity_outcomes=outcomes,
            skipped_log_ids=tuple(log.log_id for log in logs if log.log_id in already),
        )

    # -------------------------------------------------------------------------
    # Single log
    # -------------------------------------------------------------------------

    def revert_log(
        self,
        log_id: int,
        submitter_id: str | None = None,
    ) -> RevertOutcome:
        """Revert one change log under its own revert batch.

        Raises:
            ChangeLogNotFoundError: unknown log.
            LogAlreadyRevertedError: the log is a revert, or is reverted.
            LogNotRevertibleError: the log's batch never executed.
            RevertInProgressError: a concurrent revert claimed the log.
            StorageError: persistence failure.
        """
        log = self._logs.get(log_id)
        if log is None:
            raise ChangeLogNotFoundError(log_id)
        if log.is_revert:
            raise LogAlreadyRevertedError(log_id)

        reverted_by = self._logs.active_reverts([log_id]).get(log_id)
        if reverted_by is not None:
            raise LogAlreadyRevertedError(log_id, reverted_by_log_id=reverted_by)

        owner = self._batches.get(log.batch_id)
        if owner is not None and owner.status in _NEVER_EXECUTED:
            raise LogNotRevertibleError(log_id, log.batch_id, owner.status.value)

        revert_batch = self._open_claimed(
            [log],
            f"Single Revert of Log #{log_id} (Batch #{log.batch_id})",
            submitter_id=submitter_id,
        )

        with LogContext.bind(batch_id=str(revert_batch.batch_id), log_id=str(log_id)):
            status, outcomes = self._apply_inverse(
                revert_batch,
                [log],
                submitter_id,
                on_total_failure=ChangeBatchStatus.FAILED,
            )
            logger.info(
                "revert_log_completed",
                extra={
                    "revert_batch_id": revert_batch.batch_id,
                    "original_log_id": log_id,
                    "status": status.value,
                },
            )

        return RevertOutcome(
            revert_batch_id=revert_batch.batch_id,
            status=status,
            reverted_log_ids=(log_id,),
            original_batch_id=log.batch_id,
            original_log_id=log_id,
            entity_outcomes=outcomes,
        )

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def restore_value(self, log: ChangeLogEntry) -> Any:
        """Typed value to write back for ``log`` (its decoded old value)."""
        kind = self._attributes.kind(log.attribute_name)
        return decode_as(log.old_value, kind).value

    def _open_claimed(
        self,
        logs: Sequence[ChangeLogEntry],
        description: str,
        reverted_batch_id: int | None = None,
        submitter_id: str | None = None,
    ) -> ChangeBatch:
        """Claim ``logs`` for this revert, then open its PendingRevert batch."""
        log_ids = [log.log_id for log in logs]
        self._logs.claim_reverts(
            log_ids, claimed_at=self._clock.now(), submitter_id=submitter_id,
        )
        try:
            return self._lifecycle.open(
                ChangeBatchStatus.PENDING_REVERT,
                description[: self._settings.description_max_length],
                reverted_batch_id=reverted_batch_id,
                submitter_id=submitter_id,
            )
        except StorageError:
            self._release_claims(log_ids)
            raise

    def _apply_inverse(
        self,
        revert_batch: ChangeBatch,
        logs: Sequence[ChangeLogEntry],
        submitter_id: str | None,
        on_total_failure: ChangeBatchStatus | None = None,
    ) -> tuple[ChangeBatchStatus, tuple[EntityWriteOutcome, ...]]:
        """Write old values back, record the revert logs, finalize the batch.

        ``on_total_failure`` overrides the aggregate status when no inverse
        write succeeded.
        """
        grouped: dict[str, dict[str, Any]] = {}
        for log in logs:
            grouped.setdefault(log.entity_id, {})[log.attribute_name] = self.restore_value(log)

        settled = settle_all(
            {
                entity_id: partial(self._entities.write, entity_id, values)
                for entity_id, values in grouped.items()
            },
            max_workers=self._settings.max_workers,
            timeout_seconds=self._settings.call_timeout_seconds,
            operation="revert_write",
        )
        outcomes = outcomes_from(settled, grouped)
        status = aggregate_status(outcomes)
        if on_total_failure is not None and not any(o.succeeded for o in outcomes):
            status = on_total_failure

        drafts = [
            ChangeLogDraft(
                entity_id=log.entity_id,
                attribute_name=log.attribute_name,
                old_value=log.new_value,
                new_value=log.old_value,
                reverted_log_id=log.log_id,
            )
            for log in logs
        ]
        log_ids = [log.log_id for log in logs]
        try:
            self._logs.append_many(
                revert_batch.batch_id,
                drafts,
                created_at=self._clock.now(),
                submitter_id=submitter_id,
            )
            self._lifecycle.finalize(revert_batch.batch_id, status)
        except StorageError:
            self._lifecycle.force_failed(
                revert_batch.batch_id, reason="revert could not be recorded",
            )
            self._release_claims(log_ids)
            raise

        if status is ChangeBatchStatus.FAILED:
            self._release_claims(log_ids)
        return status, outcomes

    def _release_claims(self, log_ids: Sequence[int]) -> None:
        """Best-effort release; the caller's own outcome or error wins."""
        try:
            self._logs.release_reverts(log_ids)
        except StorageError as exc:
            logger.error(
                "revert_claims_not_released",
                extra={"log_ids": list(log_ids), "error": str(exc)},
            )

    def _annotate_original(self, batch_id: int) -> None:
        try:
            self._lifecycle.mark_reverted(batch_id)
        except IllegalTransitionError as exc:
            # A concurrent revert of the same batch got there first.
            logger.warning(
                "original_batch_not_marked_reverted",
                extra={"batch_id": batch_id, "current_status": exc.from_status},
            )
