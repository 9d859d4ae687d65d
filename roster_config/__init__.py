"""
roster_config -- single public entrypoint for roster configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``RosterConfig`` carrying the
    attribute dictionary and the engine settings.

Architecture position:
    Configuration.  Sits above ``roster_kernel`` and beside
    ``roster_batch.domain`` (whose ``ValueKind`` it uses).  The engines
    receive the parsed objects by injection and never import this package.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the requested name.
    - ``ValueError`` / ``KeyError`` -- structural validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``roster_config_loaded`` log entry with the set name, version and
    checksum, tying each run to the exact configuration that governed it.
"""

from __future__ import annotations

from pathlib import Path

from roster_config.loader import load_config_file
from roster_config.schema import (
    AttributeDefinition,
    AttributeDictionary,
    EngineSettings,
    RosterConfig,
)
from roster_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    name: str = "default",
    config_dir: Path | None = None,
) -> RosterConfig:
    """Load the configuration set ``<config_dir>/<name>.yaml``.

    Args:
        name: Configuration set name (file stem).
        config_dir: Directory holding configuration sets; defaults to the
            packaged ``sets/`` directory.
    """
    path = (config_dir or _DEFAULT_CONFIG_DIR) / f"{name}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"No configuration set {name!r} at {path}")

    config = load_config_file(path)
    _logger.info(
        "roster_config_loaded",
        extra={
            "config_name": config.name,
            "config_version": config.version,
            "checksum": config.checksum,
            "attribute_count": len(config.attributes),
        },
    )
    return config


__all__ = [
    "AttributeDefinition",
    "AttributeDictionary",
    "EngineSettings",
    "RosterConfig",
    "get_active_config",
]
