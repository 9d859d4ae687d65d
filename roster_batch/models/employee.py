"""
ORM model for the employee records edited by bulk changes.

This table belongs to the entity store collaborator (SqlEntityStore), not to
the audit engine: the engines never import it.  One column per catalogued
attribute; ``id`` is the entity id used in change logs.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from roster_kernel.db.base import Base


class EmployeeModel(Base):
    """Employee record with the editable attribute catalogue as columns."""

    __tablename__ = "employees"

    __table_args__ = (
        Index("ix_employees_department", "department"),
        Index("ix_employees_work_email", "work_email"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    full_name: Mapped[str | None] = mapped_column(String(200))
    preferred_name: Mapped[str | None] = mapped_column(String(200))
    work_email: Mapped[str | None] = mapped_column(String(320))
    employee_id: Mapped[str | None] = mapped_column(String(64))
    job_title: Mapped[str | None] = mapped_column(String(200))
    department: Mapped[str | None] = mapped_column(String(200))
    team: Mapped[str | None] = mapped_column(String(200))
    manager_id: Mapped[str | None] = mapped_column(String(64))
    job_level: Mapped[str | None] = mapped_column(String(50))
    employment_type: Mapped[str | None] = mapped_column(String(50))
    work_location: Mapped[str | None] = mapped_column(String(200))
    work_country: Mapped[str | None] = mapped_column(String(100))
    time_zone: Mapped[str | None] = mapped_column(String(100))
    legal_entity: Mapped[str | None] = mapped_column(String(200))
    compensation_effective_date: Mapped[date | None]
    base_salary: Mapped[Decimal | None]
    compensation_currency: Mapped[str | None] = mapped_column(String(3))
    equity_shares: Mapped[int | None]
    target_annual_bonus_percentage: Mapped[Decimal | None]
    on_target_earnings: Mapped[Decimal | None]

    @classmethod
    def attribute_names(cls) -> frozenset[str]:
        """Column names an entity store may read or write."""
        return frozenset(
            column.key for column in cls.__table__.columns if column.key != "id"
        )
