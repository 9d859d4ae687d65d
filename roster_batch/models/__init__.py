"""
roster_batch.models -- ORM models for the change audit trail and the
employee table behind the SQL entity store.

Architecture: roster_batch/models. Imports from roster_kernel.db.base only.
"""

from roster_batch.models.change import (
    ChangeBatchModel,
    ChangeLogModel,
    ChangeLogRevertClaimModel,
)
from roster_batch.models.employee import EmployeeModel

__all__ = [
    "ChangeBatchModel",
    "ChangeLogModel",
    "ChangeLogRevertClaimModel",
    "EmployeeModel",
    "import_all_models",
]


def import_all_models() -> tuple[type, ...]:
    """Return every roster ORM model (importing this package registers them)."""
    return (ChangeBatchModel, ChangeLogModel, ChangeLogRevertClaimModel, EmployeeModel)
