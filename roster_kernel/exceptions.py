"""
Typed Exception Hierarchy for the roster kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the bulk edit engine (an HTTP layer, the CLI, a scheduler) must map
failures to responses without parsing message strings.  Every error here:

  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (batch_id, status, ...)

Example - WRONG way to handle errors:
    try:
        orchestrator.cancel_batch(batch_id)
    except Exception as e:
        if "Scheduled" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        orchestrator.cancel_batch(batch_id)
    except BatchNotCancellableError as e:
        api_response(code=e.code, status=e.status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RosterKernelError (base)
    |
    +-- ValidationError
    |   +-- EmptySubmissionError
    |   +-- ChangeSetMismatchError
    |   +-- MalformedChangeSetError
    |   +-- UnknownAttributeError
    |
    +-- NotFoundError
    |   +-- BatchNotFoundError
    |   +-- ChangeLogNotFoundError
    |   +-- NoLogsToRevertError
    |
    +-- InvalidStateError
    |   +-- IllegalTransitionError
    |   +-- BatchNotCancellableError
    |   +-- BatchNotRevertibleError
    |   +-- LogAlreadyRevertedError
    |   +-- LogNotRevertibleError
    |   +-- RevertInProgressError
    |
    +-- StorageError
    |
    +-- EntityStoreError
    |   +-- EntityNotFoundError
    |   +-- EntityAttributeError
    |   +-- EntityStoreTimeoutError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                     | When Raised
-------------|--------------------------|------------------------------------------
Validation   | EMPTY_SUBMISSION         | No entity ids or no changes supplied
             | CHANGE_SET_MISMATCH      | Entity id without a non-empty change map
             | MALFORMED_CHANGE_SET     | Changes are not a mapping of mappings
             | UNKNOWN_ATTRIBUTE        | Attribute not catalogued (strict mode)
-------------|--------------------------|------------------------------------------
Not found    | BATCH_NOT_FOUND          | Batch id doesn't exist
             | CHANGE_LOG_NOT_FOUND     | Log id doesn't exist
             | NO_LOGS_TO_REVERT        | Batch has no change logs
-------------|--------------------------|------------------------------------------
State        | ILLEGAL_TRANSITION       | Status change not in the lifecycle table
             | BATCH_NOT_CANCELLABLE    | Cancel on a batch that is not Scheduled
             | BATCH_NOT_REVERTIBLE     | Revert on a non-completed batch
             | LOG_ALREADY_REVERTED     | Log is a revert, or was reverted already
             | LOG_NOT_REVERTIBLE       | Log belongs to a never-executed batch
             | REVERT_IN_PROGRESS       | Another revert holds a claim on the log
-------------|--------------------------|------------------------------------------
Storage      | STORAGE_ERROR            | Change store persistence failure
-------------|--------------------------|------------------------------------------
Entity store | ENTITY_NOT_FOUND         | Entity id unknown to the entity store
             | ENTITY_ATTRIBUTE_ERROR   | Attribute unknown to the entity store
             | ENTITY_STORE_TIMEOUT     | Call did not settle before the deadline
-------------|--------------------------|------------------------------------------
Immutability | IMMUTABILITY_VIOLATION   | Update/delete of an append-only record

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Validation and state errors are raised BEFORE any side effect.
2. EntityStoreError never escapes a batch: the fan-out captures it per entity
   and the batch status (CompletedWithErrors) reports it.
3. StorageError always chains the underlying SQLAlchemy exception
   (``raise StorageError(...) from exc``).
"""


class RosterKernelError(Exception):
    """
    Base exception for all roster kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "ROSTER_KERNEL_ERROR"


# Validation exceptions


class ValidationError(RosterKernelError):
    """Malformed or inconsistent request, rejected before any side effect."""

    code: str = "VALIDATION_ERROR"


class EmptySubmissionError(ValidationError):
    """Submission carries no entity ids or no changes."""

    code: str = "EMPTY_SUBMISSION"

    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(f"Submission has no {field_name}")


class ChangeSetMismatchError(ValidationError):
    """Some targeted entities have no (or an empty) change map."""

    code: str = "CHANGE_SET_MISMATCH"

    def __init__(self, entity_ids: list[str]):
        self.entity_ids = entity_ids
        super().__init__(
            f"Mismatch between entity ids and changes: no changes for "
            f"{', '.join(entity_ids)}"
        )


class MalformedChangeSetError(ValidationError):
    """Changes are not a mapping of entity id to attribute mapping."""

    code: str = "MALFORMED_CHANGE_SET"

    def __init__(self, detail: str, entity_id: str | None = None):
        self.detail = detail
        self.entity_id = entity_id
        if entity_id is None:
            message = f"Malformed changes: {detail}"
        else:
            message = f"Malformed changes for {entity_id}: {detail}"
        super().__init__(message)


class UnknownAttributeError(ValidationError):
    """Attribute is not in the attribute dictionary (strict mode only)."""

    code: str = "UNKNOWN_ATTRIBUTE"

    def __init__(self, attribute_names: list[str]):
        self.attribute_names = attribute_names
        super().__init__(f"Unknown attributes: {', '.join(attribute_names)}")


# Not-found exceptions


class NotFoundError(RosterKernelError):
    """Base exception for unknown batch/log ids."""

    code: str = "NOT_FOUND"


class BatchNotFoundError(NotFoundError):
    """Change batch with given ID was not found."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: int):
        self.batch_id = batch_id
        super().__init__(f"Change batch not found: {batch_id}")


class ChangeLogNotFoundError(NotFoundError):
    """Change log with given ID was not found."""

    code: str = "CHANGE_LOG_NOT_FOUND"

    def __init__(self, log_id: int):
        self.log_id = log_id
        super().__init__(f"Change log not found: {log_id}")


class NoLogsToRevertError(NotFoundError):
    """Batch exists but has no change logs to revert."""

    code: str = "NO_LOGS_TO_REVERT"

    def __init__(self, batch_id: int):
        self.batch_id = batch_id
        super().__init__(f"No logs found for batch {batch_id} to revert")


# State exceptions


class InvalidStateError(RosterKernelError):
    """Operation not legal for the current status."""

    code: str = "INVALID_STATE"


class IllegalTransitionError(InvalidStateError):
    """Requested status change is not in the lifecycle transition table."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(self, batch_id: int, from_status: str, to_status: str):
        self.batch_id = batch_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Batch {batch_id} cannot move from {from_status} to {to_status}"
        )


class BatchNotCancellableError(InvalidStateError):
    """Only Scheduled batches can be cancelled."""

    code: str = "BATCH_NOT_CANCELLABLE"

    def __init__(self, batch_id: int, status: str):
        self.batch_id = batch_id
        self.status = status
        super().__init__(
            f"Batch {batch_id} cannot be cancelled (status is {status}, "
            f"must be Scheduled)"
        )


class BatchNotRevertibleError(InvalidStateError):
    """Batch is not in a revertible status, or has nothing left to revert."""

    code: str = "BATCH_NOT_REVERTIBLE"

    def __init__(self, batch_id: int, status: str, reason: str | None = None):
        self.batch_id = batch_id
        self.status = status
        self.reason = reason
        message = f"Batch {batch_id} cannot be reverted (status is {status})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class LogAlreadyRevertedError(InvalidStateError):
    """Log is itself a revert action, or another log already reverts it."""

    code: str = "LOG_ALREADY_REVERTED"

    def __init__(self, log_id: int, reverted_by_log_id: int | None = None):
        self.log_id = log_id
        self.reverted_by_log_id = reverted_by_log_id
        if reverted_by_log_id is None:
            message = f"Log {log_id} is a revert action and cannot be reverted"
        else:
            message = (
                f"Log {log_id} has already been reverted by log "
                f"{reverted_by_log_id}"
            )
        super().__init__(message)


class LogNotRevertibleError(InvalidStateError):
    """Log belongs to a batch whose writes never happened."""

    code: str = "LOG_NOT_REVERTIBLE"

    def __init__(self, log_id: int, batch_id: int, batch_status: str):
        self.log_id = log_id
        self.batch_id = batch_id
        self.batch_status = batch_status
        super().__init__(
            f"Log {log_id} cannot be reverted: batch {batch_id} is "
            f"{batch_status}"
        )


class RevertInProgressError(InvalidStateError):
    """Another revert already claimed one of the logs.

    Raised when two reverts of the same change race; the revert claim's
    unique index lets exactly one of them proceed.
    """

    code: str = "REVERT_IN_PROGRESS"

    def __init__(self, log_ids: list[int]):
        self.log_ids = log_ids
        super().__init__(
            f"Logs {', '.join(str(i) for i in log_ids)} are already claimed "
            f"by another revert"
        )


# Storage exceptions


class StorageError(RosterKernelError):
    """Change store persistence failure (always chained to the DB error)."""

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")


# Entity store exceptions


class EntityStoreError(RosterKernelError):
    """Base exception raised by entity store collaborators."""

    code: str = "ENTITY_STORE_ERROR"


class EntityNotFoundError(EntityStoreError):
    """Entity id is unknown to the entity store."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"Entity not found: {entity_id}")


class EntityAttributeError(EntityStoreError):
    """Attribute does not exist on the entity or rejects the value."""

    code: str = "ENTITY_ATTRIBUTE_ERROR"

    def __init__(self, entity_id: str, attribute_name: str, reason: str):
        self.entity_id = entity_id
        self.attribute_name = attribute_name
        self.reason = reason
        super().__init__(
            f"Attribute {attribute_name} on entity {entity_id}: {reason}"
        )


class EntityStoreTimeoutError(EntityStoreError):
    """Entity store call did not settle before the fan-out deadline."""

    code: str = "ENTITY_STORE_TIMEOUT"

    def __init__(self, key: str, timeout_seconds: float):
        self.key = key
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Entity store call for {key} did not finish within "
            f"{timeout_seconds}s"
        )


# Immutability exceptions


class ImmutabilityViolationError(RosterKernelError):
    """
    Attempted to modify or delete an append-only record.

    Change logs are never updated; change batches only ever change
    ``status`` and ``completed_at``; neither is ever deleted.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
