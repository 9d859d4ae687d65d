"""
roster_batch.domain.lifecycle -- Pure status rules for change batches.

ZERO I/O.  Used by the lifecycle controller (transitions) and by both
engines (aggregating per-entity write outcomes into a batch status).

Transition table:

    Scheduled      -> Cancelled | Completed | CompletedWithErrors | Failed
    PendingRevert  -> Completed | CompletedWithErrors | Failed
    Completed      -> Reverted | Failed
    CompletedWithErrors -> Reverted | Failed
    Failed, Cancelled, Reverted -> (final)

``Scheduled -> Completed*/Failed`` belongs to the external executor that
runs due scheduled batches.  ``Completed* -> Failed`` is the forced
correction applied when the audit trail of a just-applied batch could not
be written.
"""

from __future__ import annotations

from typing import Iterable

from roster_batch.domain.types import ChangeBatchStatus, EntityWriteOutcome

S = ChangeBatchStatus

ALLOWED_TRANSITIONS: dict[ChangeBatchStatus, frozenset[ChangeBatchStatus]] = {
    S.SCHEDULED: frozenset({
        S.CANCELLED, S.COMPLETED, S.COMPLETED_WITH_ERRORS, S.FAILED,
    }),
    S.PENDING_REVERT: frozenset({
        S.COMPLETED, S.COMPLETED_WITH_ERRORS, S.FAILED,
    }),
    S.COMPLETED: frozenset({S.REVERTED, S.FAILED}),
    S.COMPLETED_WITH_ERRORS: frozenset({S.REVERTED, S.FAILED}),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
    S.REVERTED: frozenset(),
}


def can_transition(current: ChangeBatchStatus, target: ChangeBatchStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def sources_for(target: ChangeBatchStatus) -> frozenset[ChangeBatchStatus]:
    """All statuses from which ``target`` may be reached."""
    return frozenset(
        source
        for source, targets in ALLOWED_TRANSITIONS.items()
        if target in targets
    )


def aggregate_status(outcomes: Iterable[EntityWriteOutcome]) -> ChangeBatchStatus:
    """Roll per-entity write outcomes into one batch status.

    - every write succeeded       -> Completed
    - anything else               -> CompletedWithErrors

    ``Failed`` is never an aggregate: it is reserved for the forced
    correction after a storage failure, and for a single-log revert whose
    one write failed (decided by the revert engine).
    """
    attempted = 0
    succeeded = 0
    for outcome in outcomes:
        attempted += 1
        if outcome.succeeded:
            succeeded += 1

    if attempted and succeeded == attempted:
        return S.COMPLETED
    return S.COMPLETED_WITH_ERRORS
