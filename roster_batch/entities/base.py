"""
EntityStore protocol and the in-memory implementation.

Contract:
    ``EntityStore`` is the collaborator that owns the employee records the
    engines edit.  The engines only ever call ``read`` and ``write``; they
    never see how records are stored.

    - ``read(entity_id, attribute_names)`` returns the current values of the
      requested attributes, or None when the entity is unknown.
    - ``write(entity_id, values)`` applies every value in ONE call and raises
      an ``EntityStoreError`` (or anything else) on failure.

Architecture:
    roster_batch/entities.  ZERO imports from services/orchestrator.
    Implementations are called from fan-out worker threads and must be
    thread-safe.

Non-goals:
    - Does NOT record change logs -- that is the engines' job.
    - Does NOT retry -- a failed write is reported once and settled.
"""

from __future__ import annotations

import threading
from copy import deepcopy
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable

from roster_kernel.exceptions import EntityNotFoundError, EntityStoreError
from roster_kernel.logging_config import get_logger

logger = get_logger("batch.entities")


@runtime_checkable
class EntityStore(Protocol):
    """Read/write access to the attributes of entities (employees)."""

    def read(
        self,
        entity_id: str,
        attribute_names: Iterable[str],
    ) -> dict[str, Any] | None:
        """Current values for ``attribute_names``; None if entity unknown.

        Attributes the entity does not carry are omitted from the result.
        """
        ...

    def write(self, entity_id: str, values: Mapping[str, Any]) -> None:
        """Apply ``values`` to the entity in a single operation."""
        ...


class InMemoryEntityStore:
    """Dict-backed entity store guarded by a lock.

    Used by tests and the CLI demo mode.  ``fail_writes_for`` /
    ``fail_reads_for`` make individual entities fail so partial-failure
    paths can be exercised.
    """

    def __init__(
        self,
        records: Mapping[str, Mapping[str, Any]] | None = None,
        create_missing: bool = False,
    ) -> None:
        self._records: dict[str, dict[str, Any]] = {
            str(k): dict(v) for k, v in (records or {}).items()
        }
        self._create_missing = create_missing
        self._failing_writes: set[str] = set()
        self._failing_reads: set[str] = set()
        self._lock = threading.Lock()
        self.write_calls: list[tuple[str, dict[str, Any]]] = []

    # -------------------------------------------------------------------------
    # Failure injection
    # -------------------------------------------------------------------------

    def fail_writes_for(self, *entity_ids: str) -> None:
        with self._lock:
            self._failing_writes.update(entity_ids)

    def fail_reads_for(self, *entity_ids: str) -> None:
        with self._lock:
            self._failing_reads.update(entity_ids)

    def heal(self) -> None:
        """Clear all injected failures."""
        with self._lock:
            self._failing_writes.clear()
            self._failing_reads.clear()

    # -------------------------------------------------------------------------
    # EntityStore
    # -------------------------------------------------------------------------

    def read(
        self,
        entity_id: str,
        attribute_names: Iterable[str],
    ) -> dict[str, Any] | None:
        with self._lock:
            if entity_id in self._failing_reads:
                raise EntityStoreError(f"Injected read failure for {entity_id}")
            record = self._records.get(entity_id)
            if record is None:
                return None
            return {
                name: deepcopy(record[name])
                for name in attribute_names
                if name in record
            }

    def write(self, entity_id: str, values: Mapping[str, Any]) -> None:
        with self._lock:
            self.write_calls.append((entity_id, dict(values)))
            if entity_id in self._failing_writes:
                raise EntityStoreError(f"Injected write failure for {entity_id}")
            record = self._records.get(entity_id)
            if record is None:
                if not self._create_missing:
                    raise EntityNotFoundError(entity_id)
                record = self._records.setdefault(entity_id, {})
            record.update(deepcopy(dict(values)))

        logger.debug(
            "entity_written",
            extra={"entity_id": entity_id, "attributes": sorted(values)},
        )

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def snapshot(self, entity_id: str) -> dict[str, Any] | None:
        """Copy of the full record, for assertions."""
        with self._lock:
            record = self._records.get(entity_id)
            return deepcopy(record) if record is not None else None

    def __contains__(self, entity_id: object) -> bool:
        with self._lock:
            return entity_id in self._records
