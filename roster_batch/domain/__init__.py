"""
roster_batch.domain -- Pure types, value codec and status rules.

ZERO I/O.  All types are frozen dataclasses.
"""

from roster_batch.domain.codec import FieldValue, ValueKind, decode, decode_as, encode
from roster_batch.domain.lifecycle import aggregate_status, can_transition
from roster_batch.domain.types import (
    BatchOutcome,
    ChangeBatch,
    ChangeBatchStatus,
    ChangeLogDraft,
    ChangeLogEntry,
    EntityWriteOutcome,
    RevertOutcome,
    Submission,
    SubmitMode,
)

__all__ = [
    "BatchOutcome",
    "ChangeBatch",
    "ChangeBatchStatus",
    "ChangeLogDraft",
    "ChangeLogEntry",
    "EntityWriteOutcome",
    "FieldValue",
    "RevertOutcome",
    "Submission",
    "SubmitMode",
    "ValueKind",
    "aggregate_status",
    "can_transition",
    "decode",
    "decode_as",
    "encode",
]
