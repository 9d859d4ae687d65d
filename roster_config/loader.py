"""
Configuration Loader (``roster_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen dataclasses of
``roster_config.schema``.  Runtime callers go through
``roster_config.get_active_config()``; this module is its implementation.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown value kind, duplicate attribute, bad engine setting
  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from roster_batch.domain.codec import ValueKind
from roster_config.schema import (
    AttributeDefinition,
    AttributeDictionary,
    EngineSettings,
    RosterConfig,
    humanize,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Postconditions:
        - Returns a ``dict`` (possibly empty if the YAML is empty).
    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_attribute(data: dict[str, Any]) -> AttributeDefinition:
    """
    Parse an ``AttributeDefinition`` from a dict.

    ``name`` is required; ``label`` defaults to the humanized name and
    ``kind`` to ``string``.
    """
    name = data["name"]
    kind_raw = data.get("kind", ValueKind.STRING.value)
    try:
        kind = ValueKind(kind_raw)
    except ValueError:
        raise ValueError(
            f"Attribute {name!r} has unknown kind {kind_raw!r}; expected one of "
            f"{sorted(k.value for k in ValueKind)}"
        ) from None
    return AttributeDefinition(
        name=name,
        label=data.get("label") or humanize(name),
        kind=kind,
    )


def parse_engine_settings(data: dict[str, Any]) -> EngineSettings:
    """Parse ``EngineSettings``; absent keys keep their defaults."""
    defaults = EngineSettings()
    settings = EngineSettings(
        max_workers=int(data.get("max_workers", defaults.max_workers)),
        call_timeout_seconds=(
            float(data["call_timeout_seconds"])
            if data.get("call_timeout_seconds") is not None
            else None
        ),
        strict_attributes=bool(data.get("strict_attributes", defaults.strict_attributes)),
        description_max_length=int(
            data.get("description_max_length", defaults.description_max_length)
        ),
    )
    if settings.max_workers < 1:
        raise ValueError(f"max_workers must be >= 1, got {settings.max_workers}")
    if settings.call_timeout_seconds is not None and settings.call_timeout_seconds <= 0:
        raise ValueError(
            f"call_timeout_seconds must be positive, got {settings.call_timeout_seconds}"
        )
    return settings


def parse_config(data: dict[str, Any]) -> RosterConfig:
    """Parse a whole configuration document."""
    attributes = AttributeDictionary.from_definitions(
        [parse_attribute(item) for item in data.get("attributes", [])]
    )
    return RosterConfig(
        name=data["name"],
        version=int(data.get("version", 1)),
        attributes=attributes,
        engine=parse_engine_settings(data.get("engine") or {}),
        checksum=compute_checksum(data),
    )


def load_config_file(path: Path) -> RosterConfig:
    return parse_config(load_yaml_file(path))
