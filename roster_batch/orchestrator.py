"""
BulkEditOrchestrator -- DI container and public surface of the bulk edit engine.

Contract:
    Wires configuration, clock, change stores, lifecycle controller, apply /
    revert engines and the entity store collaborator in one place, and
    exposes the four operations:

        submit_batch(entity_ids, changes, scheduled_for=None) -> BatchOutcome
        cancel_batch(batch_id)                                -> ChangeBatch
        revert_batch(batch_id)                                -> RevertOutcome
        revert_log(log_id)                                    -> RevertOutcome

    plus ``selector()`` for read-only audit trail queries.

Architecture: roster_batch (top-level).  The canonical entry point for
    callers (HTTP layer, CLI, external scheduler).

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - Each operation runs under its own ``correlation_id`` in LogContext.
    - Sessions are opened per store operation; the orchestrator holds only
      the session factory.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Generator, Iterable, Mapping
from uuid import uuid4

from sqlalchemy.orm import Session

from roster_batch.domain.types import BatchOutcome, ChangeBatch, RevertOutcome
from roster_batch.entities.base import EntityStore
from roster_batch.entities.sql import SqlEntityStore
from roster_batch.selectors.change_selector import ChangeSelector
from roster_batch.services.apply_engine import ApplyEngine
from roster_batch.services.change_store import ChangeBatchStore, ChangeLogStore
from roster_batch.services.lifecycle import BatchLifecycleController
from roster_batch.services.revert_engine import RevertEngine
from roster_config import RosterConfig, get_active_config
from roster_kernel.domain.clock import Clock, SystemClock
from roster_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.orchestrator")


class BulkEditOrchestrator:
    """DI container for the bulk edit engine.

    Non-goals:
        - Does NOT execute Scheduled batches when they fall due; an external
          executor polls ``selector().list_due_scheduled(now)``.
        - Does NOT authenticate callers; ``submitter_id`` is recorded as given.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        entity_store: EntityStore,
        config: RosterConfig,
        clock: Clock | None = None,
        batch_store: ChangeBatchStore | None = None,
        log_store: ChangeLogStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._entity_store = entity_store
        self._config = config
        self._clock = clock or SystemClock()
        self._batch_store = batch_store or ChangeBatchStore(session_factory)
        self._log_store = log_store or ChangeLogStore(session_factory)

        self._lifecycle = BatchLifecycleController(self._batch_store, clock=self._clock)
        self._apply = ApplyEngine(
            entity_store=entity_store,
            lifecycle=self._lifecycle,
            log_store=self._log_store,
            attributes=config.attributes,
            settings=config.engine,
            clock=self._clock,
        )
        self._revert = RevertEngine(
            entity_store=entity_store,
            lifecycle=self._lifecycle,
            batch_store=self._batch_store,
            log_store=self._log_store,
            attributes=config.attributes,
            settings=config.engine,
            clock=self._clock,
        )

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session_factory(
        cls,
        session_factory: Callable[[], Session],
        entity_store: EntityStore | None = None,
        config: RosterConfig | None = None,
        clock: Clock | None = None,
    ) -> BulkEditOrchestrator:
        """Create a fully wired orchestrator.

        Args:
            session_factory: Produces sessions for the change stores.
            entity_store: Defaults to ``SqlEntityStore`` on the same factory.
            config: Defaults to ``get_active_config()``.
            clock: Optional clock for deterministic testing.
        """
        return cls(
            session_factory=session_factory,
            entity_store=entity_store or SqlEntityStore(session_factory),
            config=config or get_active_config(),
            clock=clock,
        )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def submit_batch(
        self,
        entity_ids: Iterable[Any],
        changes: Mapping[Any, Mapping[str, Any]],
        scheduled_for: datetime | None = None,
        submitter_id: str | None = None,
    ) -> BatchOutcome:
        with self._operation("submit_batch", submitter_id):
            submission = self._apply.validate(
                entity_ids, changes, scheduled_for=scheduled_for, submitter_id=submitter_id,
            )
            return self._apply.submit(submission)

    def cancel_batch(self, batch_id: int, submitter_id: str | None = None) -> ChangeBatch:
        with self._operation("cancel_batch", submitter_id, batch_id=batch_id):
            return self._lifecycle.cancel(batch_id)

    def revert_batch(self, batch_id: int, submitter_id: str | None = None) -> RevertOutcome:
        with self._operation("revert_batch", submitter_id, batch_id=batch_id):
            return self._revert.revert_batch(batch_id, submitter_id=submitter_id)

    def revert_log(self, log_id: int, submitter_id: str | None = None) -> RevertOutcome:
        with self._operation("revert_log", submitter_id, log_id=log_id):
            return self._revert.revert_log(log_id, submitter_id=submitter_id)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @contextmanager
    def selector(self) -> Generator[ChangeSelector, None, None]:
        """Read-only selector on a session that is closed on exit."""
        session = self._session_factory()
        try:
            yield ChangeSelector(session)
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    @contextmanager
    def _operation(
        self,
        name: str,
        submitter_id: str | None,
        batch_id: int | None = None,
        log_id: int | None = None,
    ) -> Generator[None, None, None]:
        correlation_id = str(uuid4())
        with LogContext.bind(
            correlation_id=correlation_id,
            actor_id=submitter_id,
            batch_id=str(batch_id) if batch_id is not None else None,
            log_id=str(log_id) if log_id is not None else None,
        ):
            logger.debug("operation_started", extra={"operation": name})
            try:
                yield
            except Exception as exc:
                logger.warning(
                    "operation_failed",
                    extra={
                        "operation": name,
                        "error_code": getattr(exc, "code", type(exc).__name__),
                        "error": str(exc),
                    },
                )
                raise

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def config(self) -> RosterConfig:
        return self._config

    @property
    def entity_store(self) -> EntityStore:
        return self._entity_store

    @property
    def lifecycle(self) -> BatchLifecycleController:
        return self._lifecycle
