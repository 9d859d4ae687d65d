"""
SqlEntityStore -- EntityStore backed by the ``employees`` table.

Contract:
    Each ``read`` / ``write`` runs in its own short-lived session taken from
    the injected session factory, so calls are safe to run concurrently from
    fan-out worker threads.  ``write`` commits; a failed write rolls back and
    leaves the row untouched.

Failure modes:
    - Unknown attribute name  -> ``EntityAttributeError``.
    - Unknown entity on write -> ``EntityNotFoundError``.
    - Value the column cannot hold -> ``EntityAttributeError``.
    - Any other database failure propagates as the SQLAlchemy error; the
      engines settle it as a failed write.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy import Date, Integer, Numeric
from sqlalchemy.orm import Session

from roster_batch.models.employee import EmployeeModel
from roster_kernel.db.engine import session_scope
from roster_kernel.exceptions import EntityAttributeError, EntityNotFoundError
from roster_kernel.logging_config import get_logger

logger = get_logger("batch.entities.sql")


class SqlEntityStore:
    """Employee records in the relational database."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory
        self._columns = {
            column.key: column
            for column in EmployeeModel.__table__.columns
            if column.key != "id"
        }

    def read(
        self,
        entity_id: str,
        attribute_names: Iterable[str],
    ) -> dict[str, Any] | None:
        names = list(attribute_names)
        self._check_names(entity_id, names)

        session = self._session_factory()
        try:
            employee = session.get(EmployeeModel, entity_id)
            if employee is None:
                return None
            return {name: getattr(employee, name) for name in names}
        finally:
            session.close()

    def write(self, entity_id: str, values: Mapping[str, Any]) -> None:
        self._check_names(entity_id, values)
        coerced = {
            name: self._coerce(entity_id, name, value)
            for name, value in values.items()
        }

        with session_scope(self._session_factory) as session:
            employee = session.get(EmployeeModel, entity_id)
            if employee is None:
                raise EntityNotFoundError(entity_id)
            for name, value in coerced.items():
                setattr(employee, name, value)

        logger.debug(
            "employee_updated",
            extra={"entity_id": entity_id, "attributes": sorted(values)},
        )

    def add(self, entity_id: str, **values: Any) -> None:
        """Insert a new employee row (seeding helper for tests and the CLI)."""
        self._check_names(entity_id, values)
        row = EmployeeModel(
            id=entity_id,
            **{k: self._coerce(entity_id, k, v) for k, v in values.items()},
        )
        with session_scope(self._session_factory) as session:
            session.add(row)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _check_names(self, entity_id: str, names: Iterable[str]) -> None:
        for name in names:
            if name not in self._columns:
                raise EntityAttributeError(entity_id, name, "no such attribute")

    def _coerce(self, entity_id: str, name: str, value: Any) -> Any:
        """Convert ``value`` to what the column stores."""
        if value is None:
            return None
        column_type = self._columns[name].type
        try:
            if isinstance(column_type, Date):
                if isinstance(value, datetime):
                    return value.date()
                if isinstance(value, date):
                    return value
                return date.fromisoformat(str(value))
            if isinstance(column_type, Integer):
                if isinstance(value, bool):
                    raise ValueError("boolean is not an integer")
                as_decimal = Decimal(str(value))
                if as_decimal != as_decimal.to_integral_value():
                    raise ValueError(f"{value!r} is not integral")
                return int(as_decimal)
            if isinstance(column_type, Numeric):
                if isinstance(value, bool):
                    raise ValueError("boolean is not a number")
                return Decimal(str(value))
        except (ValueError, InvalidOperation) as exc:
            raise EntityAttributeError(entity_id, name, str(exc)) from exc
        if isinstance(value, bool):
            return "true" if value else "false"
        return value if isinstance(value, str) else str(value)
