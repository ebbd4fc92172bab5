"""Target project configuration: reading, writing and schema reconciliation.

The project config is a single record in the definition format with a
``version`` field. Reconciliation repairs schema drift (keys added since the
file was written), layers template overrides on top, and never drops a key
the user set unless a template explicitly overrides it.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from trellis.dcf import parse_records, write_records
from trellis.errors import DefinitionSyntaxError

logger = logging.getLogger(__name__)

VERSION_KEY = "version"


@dataclass(frozen=True)
class ConfigSchema:
    """Ordered default fields of the project config, passed in explicitly."""

    path: str
    fields: tuple[tuple[str, str], ...]

    def defaults(self) -> dict[str, str]:
        return dict(self.fields)


DEFAULT_SCHEMA = ConfigSchema(
    path="config/global.dcf",
    fields=(
        ("data_loading", "TRUE"),
        ("data_loading_header", "TRUE"),
        ("cache_loading", "TRUE"),
        ("munging", "TRUE"),
        ("logging", "FALSE"),
        ("logging_level", "INFO"),
        ("load_libraries", "FALSE"),
        ("libraries", ""),
    ),
)


def read_project_config(path: Path) -> dict[str, str] | None:
    """Read the config record. Returns None if the file does not exist."""
    if not path.exists():
        return None
    records = parse_records(path.read_text(encoding="utf-8"), source=path)
    if len(records) > 1:
        raise DefinitionSyntaxError(f"expected a single config record, found {len(records)}", source=path)
    return records[0] if records else {}


def write_project_config(path: Path, config: Mapping[str, str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    write_records(path, [config])


def reconcile(
    current: Mapping[str, str] | None,
    overrides: Mapping[str, str],
    schema: ConfigSchema,
    tool_version: str,
) -> dict[str, str]:
    """Merge template overrides into the current config against *schema*.

    Steps: start from *current*; fill keys missing relative to the schema;
    overlay *overrides* (their ``version`` is ignored); stamp *tool_version*.
    Key order is ``version``, schema keys, then any other keys as first seen.
    """
    merged: dict[str, str] = dict(current or {})
    for key, default in schema.fields:
        if key not in merged:
            logger.debug("Config key '%s' missing, filling default %r", key, default)
            merged[key] = default
    for key, value in overrides.items():
        if key == VERSION_KEY:
            continue
        merged[key] = value
    merged[VERSION_KEY] = tool_version

    ordered: dict[str, str] = {VERSION_KEY: tool_version}
    for key, _ in schema.fields:
        ordered[key] = merged[key]
    for key, value in merged.items():
        ordered.setdefault(key, value)
    return ordered


def reconcile_file(
    config_path: Path,
    overrides: Mapping[str, str],
    schema: ConfigSchema,
    tool_version: str,
) -> dict[str, str]:
    """Reconcile the on-disk config at *config_path* and write it back."""
    current = read_project_config(config_path)
    result = reconcile(current, overrides, schema, tool_version)
    if current is not None and current.get(VERSION_KEY) != tool_version:
        logger.info(
            "Upgraded %s from version %s to %s",
            config_path,
            current.get(VERSION_KEY, "<none>"),
            tool_version,
        )
    write_project_config(config_path, result)
    return result
