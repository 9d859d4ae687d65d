"""
roster_batch.domain.types -- Pure frozen dataclasses for the bulk edit engine.

ZERO I/O.

Frozen dataclasses with enum status fields and tuples for immutable
collections.  ORM models convert to these via ``to_dto()``; services and the
orchestrator only ever hand these out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# =============================================================================
# Status enums
# =============================================================================


class ChangeBatchStatus(str, Enum):
    """Batch-level lifecycle status.

    Values match the strings stored in ``change_batches.status``.
    """

    SCHEDULED = "Scheduled"  # Persisted for later execution, no writes yet
    COMPLETED = "Completed"  # Every entity write succeeded
    COMPLETED_WITH_ERRORS = "CompletedWithErrors"  # Some writes failed
    FAILED = "Failed"  # Audit trail not written, or a single-log revert write failed
    CANCELLED = "Cancelled"  # Scheduled batch withdrawn before execution
    PENDING_REVERT = "PendingRevert"  # Revert batch whose writes are in flight
    REVERTED = "Reverted"  # Completed batch undone by a later revert batch


TERMINAL_STATUSES = frozenset({
    ChangeBatchStatus.COMPLETED,
    ChangeBatchStatus.COMPLETED_WITH_ERRORS,
    ChangeBatchStatus.FAILED,
    ChangeBatchStatus.CANCELLED,
    ChangeBatchStatus.REVERTED,
})

REVERTIBLE_STATUSES = frozenset({
    ChangeBatchStatus.COMPLETED,
    ChangeBatchStatus.COMPLETED_WITH_ERRORS,
})


class SubmitMode(str, Enum):
    """How a submission is carried out."""

    IMMEDIATE = "immediate"
    SCHEDULED = "scheduled"


# =============================================================================
# Persistent record DTOs
# =============================================================================


@dataclass(frozen=True)
class ChangeBatch:
    """Immutable snapshot of a change batch row.

    ``reverted_batch_id`` is set iff this batch IS a whole-batch revert of
    the batch with that id.  ``scheduled_for`` is set iff the batch was
    created through the scheduled path.
    """

    batch_id: int
    status: ChangeBatchStatus
    created_at: datetime
    description: str
    scheduled_for: datetime | None = None
    completed_at: datetime | None = None
    reverted_batch_id: int | None = None
    submitter_id: str | None = None

    @property
    def is_revert(self) -> bool:
        return self.reverted_batch_id is not None


@dataclass(frozen=True)
class ChangeLogEntry:
    """Immutable snapshot of one recorded field mutation.

    ``old_value`` / ``new_value`` are canonical text (see codec).
    ``reverted_log_id`` is set iff this log is the inverse of that log.
    """

    log_id: int
    batch_id: int
    entity_id: str
    attribute_name: str
    old_value: str | None
    new_value: str | None
    created_at: datetime
    reverted_log_id: int | None = None

    @property
    def is_revert(self) -> bool:
        return self.reverted_log_id is not None


@dataclass(frozen=True)
class ChangeLogDraft:
    """A change log not yet persisted (no id, no batch).

    Built by the engines, tagged with a batch id by the log store.
    """

    entity_id: str
    attribute_name: str
    old_value: str | None
    new_value: str | None
    reverted_log_id: int | None = None


# =============================================================================
# Execution results
# =============================================================================


@dataclass(frozen=True)
class EntityWriteOutcome:
    """Settled result of the single coalesced write for one entity."""

    entity_id: str
    attribute_names: tuple[str, ...]
    succeeded: bool
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class BatchOutcome:
    """Result of ``submit_batch`` -- returned by the apply engine.

    For scheduled submissions ``entity_outcomes`` is empty (nothing was
    written yet).
    """

    batch_id: int
    status: ChangeBatchStatus
    mode: SubmitMode
    log_count: int
    entity_outcomes: tuple[EntityWriteOutcome, ...] = ()
    scheduled_for: datetime | None = None

    @property
    def failed_entities(self) -> tuple[str, ...]:
        return tuple(o.entity_id for o in self.entity_outcomes if not o.succeeded)


@dataclass(frozen=True)
class RevertOutcome:
    """Result of ``revert_batch`` / ``revert_log``."""

    revert_batch_id: int
    status: ChangeBatchStatus
    reverted_log_ids: tuple[int, ...]
    original_batch_id: int | None = None
    original_log_id: int | None = None
    entity_outcomes: tuple[EntityWriteOutcome, ...] = ()
    skipped_log_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class Submission:
    """Validated, normalized request to change attributes on many entities.

    ``changes`` preserves the order of ``entity_ids``; each inner mapping is
    non-empty.
    """

    entity_ids: tuple[str, ...]
    changes: dict[str, dict[str, Any]] = field(default_factory=dict)
    scheduled_for: datetime | None = None
    submitter_id: str | None = None

    @property
    def mode(self) -> SubmitMode:
        return SubmitMode.SCHEDULED if self.scheduled_for else SubmitMode.IMMEDIATE

    @property
    def field_count(self) -> int:
        return sum(len(attrs) for attrs in self.changes.values())
