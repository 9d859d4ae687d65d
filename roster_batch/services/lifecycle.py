"""
BatchLifecycleController -- the only component that changes batch status.

Contract:
    - ``open()`` creates a batch stamped with the clock.
    - ``cancel()`` moves a ``Scheduled`` batch to ``Cancelled``.
    - ``finalize()`` moves an in-flight batch to its aggregate outcome.
    - ``force_failed()`` corrects a batch to ``Failed`` after a storage
      failure; it never raises, so the original error reaches the caller.
    - ``mark_reverted()`` annotates an original batch after a revert.

Architecture: roster_batch/services.  Used by both engines and by the
    orchestrator; never touches entity stores.

Invariants enforced:
    - Every transition follows ``roster_batch.domain.lifecycle``.
    - Every move into a terminal outcome stamps ``completed_at`` from the
      injected clock.
"""

from __future__ import annotations

from datetime import datetime

from roster_batch.domain.types import ChangeBatch, ChangeBatchStatus, REVERTIBLE_STATUSES
from roster_batch.services.change_store import ChangeBatchStore
from roster_kernel.domain.clock import Clock, SystemClock
from roster_kernel.exceptions import (
    BatchNotCancellableError,
    IllegalTransitionError,
    RosterKernelError,
)
from roster_kernel.logging_config import get_logger

logger = get_logger("batch.lifecycle")


class BatchLifecycleController:
    """Enforces legal status transitions for change batches."""

    def __init__(
        self,
        batch_store: ChangeBatchStore,
        clock: Clock | None = None,
    ) -> None:
        self._batches = batch_store
        self._clock = clock or SystemClock()

    def open(
        self,
        status: ChangeBatchStatus,
        description: str,
        scheduled_for: datetime | None = None,
        reverted_batch_id: int | None = None,
        submitter_id: str | None = None,
        completed: bool = False,
    ) -> ChangeBatch:
        """Create a batch; ``completed=True`` stamps ``completed_at`` too."""
        now = self._clock.now()
        return self._batches.create(
            status=status,
            description=description,
            created_at=now,
            scheduled_for=scheduled_for,
            completed_at=now if completed else None,
            reverted_batch_id=reverted_batch_id,
            submitter_id=submitter_id,
        )

    def cancel(self, batch_id: int) -> ChangeBatch:
        """Cancel a Scheduled batch.

        Raises:
            BatchNotFoundError: unknown batch.
            BatchNotCancellableError: status is not exactly Scheduled.
        """
        try:
            batch = self._batches.transition(
                batch_id,
                ChangeBatchStatus.CANCELLED,
                completed_at=self._clock.now(),
                expected=(ChangeBatchStatus.SCHEDULED,),
            )
        except IllegalTransitionError as exc:
            raise BatchNotCancellableError(batch_id, exc.from_status) from exc

        logger.info("batch_cancelled", extra={"batch_id": batch_id})
        return batch

    def finalize(
        self,
        batch_id: int,
        status: ChangeBatchStatus,
        from_status: ChangeBatchStatus = ChangeBatchStatus.PENDING_REVERT,
    ) -> ChangeBatch:
        return self._batches.transition(
            batch_id,
            status,
            completed_at=self._clock.now(),
            expected=(from_status,),
        )

    def force_failed(self, batch_id: int, reason: str) -> ChangeBatch | None:
        """Best-effort correction to ``Failed``.

        Returns the updated batch, or None when the correction itself could
        not be applied (already Failed, or the store is down).  The failure
        is logged; the caller re-raises its own error.
        """
        try:
            batch = self._batches.transition(
                batch_id,
                ChangeBatchStatus.FAILED,
                completed_at=self._clock.now(),
            )
        except IllegalTransitionError as exc:
            if exc.from_status != ChangeBatchStatus.FAILED.value:
                logger.error(
                    "batch_force_failed_rejected",
                    extra={"batch_id": batch_id, "from_status": exc.from_status},
                )
            return None
        except RosterKernelError as exc:
            logger.error(
                "batch_force_failed_error",
                extra={"batch_id": batch_id, "error": str(exc)},
            )
            return None

        logger.warning(
            "batch_forced_failed",
            extra={"batch_id": batch_id, "reason": reason},
        )
        return batch

    def mark_reverted(self, batch_id: int) -> ChangeBatch:
        """Completed / CompletedWithErrors -> Reverted (one-way)."""
        batch = self._batches.transition(
            batch_id,
            ChangeBatchStatus.REVERTED,
            expected=REVERTIBLE_STATUSES,
        )
        logger.info("batch_marked_reverted", extra={"batch_id": batch_id})
        return batch
