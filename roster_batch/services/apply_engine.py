"""
ApplyEngine -- turns a submission into entity writes plus a change log.

Contract:
    - ``validate()`` normalizes a raw request into a ``Submission`` or raises
      a ``ValidationError`` before any side effect.
    - ``submit()`` runs the immediate path (read, write, record) or the
      scheduled path (record only) and returns a ``BatchOutcome``.

Architecture: roster_batch/services.  Talks to the entity store only through
    ``settle_all``; persists only through the lifecycle controller and the
    log store.

Invariants enforced:
    - One change log per (entity, attribute) pair, all under one batch id.
    - One write per entity, carrying every attribute for that entity.
    - A failed read degrades that entity's old values to unknown (NULL); a
      failed write degrades the batch status.  Neither aborts siblings.
    - Status is decided only after every write has settled.
    - If logs cannot be persisted after the batch row exists, the batch is
      forced to ``Failed`` and ``StorageError`` propagates.  Entity writes
      already applied are NOT rolled back.

Failure modes:
    - ``EmptySubmissionError`` / ``MalformedChangeSetError`` /
      ``ChangeSetMismatchError`` / ``UnknownAttributeError`` before any
      side effect.
    - ``StorageError`` from the change stores.
"""

from __future__ import annotations

from datetime import datetime
from functools import partial
from typing import Any, Iterable, Mapping

from roster_batch.domain.codec import encode
from roster_batch.domain.lifecycle import aggregate_status
from roster_batch.domain.types import (
    BatchOutcome,
    ChangeBatchStatus,
    ChangeLogDraft,
    EntityWriteOutcome,
    Submission,
    SubmitMode,
)
from roster_batch.entities.base import EntityStore
from roster_batch.services.change_store import ChangeLogStore
from roster_batch.services.fanout import Settled, settle_all
from roster_batch.services.lifecycle import BatchLifecycleController
from roster_config.schema import AttributeDictionary, EngineSettings
from roster_kernel.domain.clock import Clock, SystemClock
from roster_kernel.exceptions import (
    ChangeSetMismatchError,
    EmptySubmissionError,
    MalformedChangeSetError,
    StorageError,
    UnknownAttributeError,
)
from roster_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.apply")


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit]


def outcomes_from(
    settled: Mapping[str, Settled],
    attribute_names: Mapping[str, Iterable[str]],
) -> tuple[EntityWriteOutcome, ...]:
    """Per-entity write outcomes in the order the writes were issued."""
    outcomes = []
    for entity_id, result in settled.items():
        outcomes.append(EntityWriteOutcome(
            entity_id=entity_id,
            attribute_names=tuple(attribute_names[entity_id]),
            succeeded=result.ok,
            error_code=result.error_code,
            error_message=result.error_message,
        ))
        if not result.ok:
            logger.warning(
                "entity_write_failed",
                extra={
                    "entity_id": entity_id,
                    "error_code": result.error_code,
                    "error": result.error_message,
                },
            )
    return tuple(outcomes)


class ApplyEngine:
    """Applies bulk attribute edits and records them."""

    def __init__(
        self,
        entity_store: EntityStore,
        lifecycle: BatchLifecycleController,
        log_store: ChangeLogStore,
        attributes: AttributeDictionary,
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._entities = entity_store
        self._lifecycle = lifecycle
        self._logs = log_store
        self._attributes = attributes
        self._settings = settings or EngineSettings()
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(
        self,
        entity_ids: Iterable[Any],
        changes: Mapping[Any, Mapping[str, Any]] | None,
        scheduled_for: datetime | None = None,
        submitter_id: str | None = None,
    ) -> Submission:
        """Normalize and check a raw request.

        Entity ids are stringified and de-duplicated in order.  Change maps
        keyed by ids that are not targeted are ignored (with a warning).
        """
        ids = list(dict.fromkeys(str(entity_id) for entity_id in (entity_ids or ())))
        if not ids:
            raise EmptySubmissionError("entity_ids")
        if not changes:
            raise EmptySubmissionError("changes")
        if not isinstance(changes, Mapping):
            raise MalformedChangeSetError(
                f"expected a mapping of entity id to attributes, got "
                f"{type(changes).__name__}"
            )

        normalized = {str(key): value for key, value in changes.items()}
        for eid in ids:
            value = normalized.get(eid)
            if value is not None and not isinstance(value, Mapping):
                raise MalformedChangeSetError(
                    f"expected an attribute mapping, got {type(value).__name__}",
                    entity_id=eid,
                )
        missing = [eid for eid in ids if not normalized.get(eid)]
        if missing:
            raise ChangeSetMismatchError(missing)

        ignored = sorted(set(normalized) - set(ids))
        if ignored:
            logger.warning(
                "submission_extra_changes_ignored",
                extra={"entity_ids": ignored},
            )

        selected = {eid: dict(normalized[eid]) for eid in ids}

        if self._settings.strict_attributes:
            unknown = self._attributes.unknown(
                name for attrs in selected.values() for name in attrs
            )
            if unknown:
                raise UnknownAttributeError(unknown)

        return Submission(
            entity_ids=tuple(ids),
            changes=selected,
            scheduled_for=scheduled_for,
            submitter_id=submitter_id,
        )

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------

    def submit(self, submission: Submission) -> BatchOutcome:
        if submission.mode is SubmitMode.SCHEDULED:
            return self.schedule(submission)
        return self.apply_immediate(submission)

    def schedule(self, submission: Submission) -> BatchOutcome:
        """Record a batch for later execution; no reads, no writes."""
        description = _truncate(
            f"Scheduled bulk edit for {len(submission.entity_ids)} employees.",
            self._settings.description_max_length,
        )
        batch = self._lifecycle.open(
            ChangeBatchStatus.SCHEDULED,
            description,
            scheduled_for=submission.scheduled_for,
            submitter_id=submission.submitter_id,
        )

        with LogContext.bind(batch_id=str(batch.batch_id)):
            drafts = [
                ChangeLogDraft(
                    entity_id=entity_id,
                    attribute_name=name,
                    old_value=None,
                    new_value=encode(value),
                )
                for entity_id in submission.entity_ids
                for name, value in submission.changes[entity_id].items()
            ]
            entries = self._persist_logs(batch.batch_id, drafts, submission.submitter_id)

            logger.info(
                "batch_scheduled",
                extra={
                    "batch_id": batch.batch_id,
                    "scheduled_for": submission.scheduled_for,
                    "entity_count": len(submission.entity_ids),
                    "log_count": len(entries),
                },
            )

        return BatchOutcome(
            batch_id=batch.batch_id,
            status=ChangeBatchStatus.SCHEDULED,
            mode=SubmitMode.SCHEDULED,
            log_count=len(entries),
            scheduled_for=submission.scheduled_for,
        )

    def apply_immediate(self, submission: Submission) -> BatchOutcome:
        """Read old values, write new ones, then record batch and logs."""
        changes = submission.changes
        old_values = self._read_old_values(changes)

        drafts = [
            ChangeLogDraft(
                entity_id=entity_id,
                attribute_name=name,
                old_value=encode(old_values[entity_id].get(name)),
                new_value=encode(value),
            )
            for entity_id in submission.entity_ids
            for name, value in changes[entity_id].items()
        ]

        settled = settle_all(
            {
                entity_id: partial(self._entities.write, entity_id, dict(changes[entity_id]))
                for entity_id in submission.entity_ids
            },
            max_workers=self._settings.max_workers,
            timeout_seconds=self._settings.call_timeout_seconds,
            operation="write",
        )
        outcomes = outcomes_from(settled, changes)
        status = aggregate_status(outcomes)

        description = _truncate(
            f"Immediate bulk edit for {len(submission.entity_ids)} employees.",
            self._settings.description_max_length,
        )
        batch = self._lifecycle.open(
            status,
            description,
            submitter_id=submission.submitter_id,
            completed=True,
        )

        with LogContext.bind(batch_id=str(batch.batch_id)):
            entries = self._persist_logs(batch.batch_id, drafts, submission.submitter_id)

            logger.info(
                "batch_submitted",
                extra={
                    "batch_id": batch.batch_id,
                    "status": status.value,
                    "entity_count": len(outcomes),
                    "failed_entities": sum(1 for o in outcomes if not o.succeeded),
                    "log_count": len(entries),
                },
            )

        return BatchOutcome(
            batch_id=batch.batch_id,
            status=status,
            mode=SubmitMode.IMMEDIATE,
            log_count=len(entries),
            entity_outcomes=outcomes,
        )

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _read_old_values(
        self,
        changes: Mapping[str, Mapping[str, Any]],
    ) -> dict[str, dict[str, Any]]:
        """Current values per entity; unknown (empty) where the read failed."""
        settled = settle_all(
            {
                entity_id: partial(self._entities.read, entity_id, tuple(attrs))
                for entity_id, attrs in changes.items()
            },
            max_workers=self._settings.max_workers,
            timeout_seconds=self._settings.call_timeout_seconds,
            operation="read",
        )

        old_values: dict[str, dict[str, Any]] = {}
        for entity_id, result in settled.items():
            if not result.ok:
                logger.warning(
                    "entity_read_failed",
                    extra={"entity_id": entity_id, "error": result.error_message},
                )
                old_values[entity_id] = {}
            elif result.value is None:
                logger.warning("entity_not_found", extra={"entity_id": entity_id})
                old_values[entity_id] = {}
            else:
                old_values[entity_id] = dict(result.value)
        return old_values

    def _persist_logs(
        self,
        batch_id: int,
        drafts: list[ChangeLogDraft],
        submitter_id: str | None,
    ):
        try:
            return self._logs.append_many(
                batch_id, drafts, created_at=self._clock.now(), submitter_id=submitter_id,
            )
        except StorageError:
            self._lifecycle.force_failed(batch_id, reason="change log insert failed")
            raise
