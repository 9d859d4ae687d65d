"""
Configuration Schema (``roster_config.schema``).

Frozen dataclasses describing one configuration set: the attribute
dictionary (labels and value kinds for every editable employee attribute)
and the engine settings.

Every object here is immutable.  The attribute dictionary is passed to the
components that need labels or kinds; nothing reads it from a module-level
global.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterator, Mapping

from roster_batch.domain.codec import ValueKind

_WORD_START = re.compile(r"\b\w")


def humanize(name: str) -> str:
    """Fallback label: ``"job_level"`` -> ``"Job Level"``."""
    return _WORD_START.sub(lambda m: m.group(0).upper(), name.replace("_", " "))


@dataclass(frozen=True)
class AttributeDefinition:
    """One editable attribute: storage name, display label, value kind."""

    name: str
    label: str
    kind: ValueKind = ValueKind.STRING


@dataclass(frozen=True)
class AttributeDictionary:
    """Immutable lookup table of attribute definitions keyed by name."""

    definitions: Mapping[str, AttributeDefinition] = field(
        default_factory=lambda: MappingProxyType({}),
    )

    @classmethod
    def from_definitions(
        cls, definitions: tuple[AttributeDefinition, ...] | list[AttributeDefinition],
    ) -> AttributeDictionary:
        """Build from a sequence; raises ValueError on duplicate names."""
        table: dict[str, AttributeDefinition] = {}
        for definition in definitions:
            if definition.name in table:
                raise ValueError(f"Duplicate attribute definition: {definition.name}")
            table[definition.name] = definition
        return cls(definitions=MappingProxyType(table))

    def __contains__(self, name: object) -> bool:
        return name in self.definitions

    def __iter__(self) -> Iterator[AttributeDefinition]:
        return iter(self.definitions.values())

    def __len__(self) -> int:
        return len(self.definitions)

    def get(self, name: str) -> AttributeDefinition | None:
        return self.definitions.get(name)

    def label(self, name: str) -> str:
        definition = self.definitions.get(name)
        return definition.label if definition else humanize(name)

    def kind(self, name: str) -> ValueKind:
        """Declared kind, or ``ValueKind.RAW`` for uncatalogued attributes."""
        definition = self.definitions.get(name)
        return definition.kind if definition else ValueKind.RAW

    def unknown(self, names) -> list[str]:
        """Names (in input order, de-duplicated) missing from the dictionary."""
        seen: list[str] = []
        for name in names:
            if name not in self.definitions and name not in seen:
                seen.append(name)
        return seen


@dataclass(frozen=True)
class EngineSettings:
    """Tuning knobs for the apply / revert engines.

    ``call_timeout_seconds`` bounds one settle-all fan-out as a whole; None
    waits indefinitely.  ``strict_attributes`` rejects submissions that touch
    attributes missing from the dictionary.
    """

    max_workers: int = 8
    call_timeout_seconds: float | None = None
    strict_attributes: bool = False
    description_max_length: int = 255


@dataclass(frozen=True)
class RosterConfig:
    """One loaded configuration set."""

    name: str
    version: int
    attributes: AttributeDictionary
    engine: EngineSettings
    checksum: str
