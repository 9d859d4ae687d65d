"""
roster_batch.domain.codec -- Canonical text form for logged attribute values.

ZERO I/O.

Change logs store ``old_value`` / ``new_value`` as nullable text so one log
table can record any attribute.  ``encode`` is total.  Decoding comes in two
flavours:

    decode(text)            -- heuristic classification by trial: number,
                               then boolean, then the text itself.
    decode_as(text, kind)   -- principled decoding when the attribute
                               dictionary declares the attribute's kind.
                               ``ValueKind.RAW`` (kind unknown) falls back to
                               the heuristic.

Known limitation of the heuristic: a string attribute whose value looks like
a number ("007", "1e3") or a boolean ("TRUE") is returned as a number or a
bool.  Catalogued attributes avoid this through ``decode_as``.  Original
Python types are not preserved through the log.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_DECIMAL_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


class ValueKind(str, Enum):
    """Scalar kinds an attribute value can have."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    RAW = "raw"  # Kind unknown: text whose type must be guessed


@dataclass(frozen=True)
class FieldValue:
    """Tagged value: a Python value plus the kind it was decoded as.

    ``value`` is None for a stored NULL regardless of kind.
    """

    kind: ValueKind
    value: Any

    @property
    def is_null(self) -> bool:
        return self.value is None

    @property
    def text(self) -> str | None:
        return encode(self.value)

    @classmethod
    def of(cls, value: Any) -> FieldValue:
        """Classify an in-memory Python value."""
        if value is None:
            return cls(ValueKind.RAW, None)
        if isinstance(value, bool):
            return cls(ValueKind.BOOLEAN, value)
        if isinstance(value, (int, float, Decimal)):
            return cls(ValueKind.NUMBER, value)
        if isinstance(value, (date, datetime)):
            return cls(ValueKind.DATE, value)
        if isinstance(value, str):
            return cls(ValueKind.STRING, value)
        return cls(ValueKind.RAW, value)


def encode(value: Any) -> str | None:
    """Serialize any attribute value to its canonical text form.

    None maps to a stored NULL; booleans become ``"true"`` / ``"false"``;
    dates become ISO-8601; containers become sorted-key JSON.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def parse_number(text: str) -> int | Decimal | None:
    """Parse ``text`` as a finite number, or return None.

    Integral text becomes ``int``; anything else numeric becomes ``Decimal``
    so salaries and percentages survive without float rounding.
    """
    candidate = text.strip()
    if _INTEGER_RE.match(candidate):
        return int(candidate)
    if _DECIMAL_RE.match(candidate):
        try:
            return Decimal(candidate)
        except InvalidOperation:
            return None
    return None


def parse_boolean(text: str) -> bool | None:
    lowered = text.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return None


def parse_date(text: str) -> date | datetime | None:
    candidate = text.strip()
    try:
        if "T" in candidate or " " in candidate:
            return datetime.fromisoformat(candidate)
        return date.fromisoformat(candidate)
    except ValueError:
        return None


def classify(text: str | None) -> FieldValue:
    """Heuristically classify stored text: number, then boolean, then text."""
    if text is None:
        return FieldValue(ValueKind.RAW, None)
    number = parse_number(text)
    if number is not None:
        return FieldValue(ValueKind.NUMBER, number)
    flag = parse_boolean(text)
    if flag is not None:
        return FieldValue(ValueKind.BOOLEAN, flag)
    return FieldValue(ValueKind.STRING, text)


def decode(text: str | None) -> Any:
    """Best-effort decode of stored text back to a typed value."""
    return classify(text).value


def decode_as(text: str | None, kind: ValueKind) -> FieldValue:
    """Decode ``text`` as the declared ``kind``.

    Text that does not parse as the declared kind is returned unchanged as a
    ``RAW`` value rather than guessed at.
    """
    if text is None:
        return FieldValue(kind, None)
    if kind is ValueKind.RAW:
        return classify(text)
    if kind is ValueKind.STRING:
        return FieldValue(kind, text)

    parsed: Any
    if kind is ValueKind.NUMBER:
        parsed = parse_number(text)
    elif kind is ValueKind.BOOLEAN:
        parsed = parse_boolean(text)
    else:
        parsed = parse_date(text)

    if parsed is None:
        return FieldValue(ValueKind.RAW, text)
    return FieldValue(kind, parsed)
