"""Template definition parsing, validation and root-registry normalization.

A definition file holds ``root`` records (the site-wide template registry) or
``project`` records (the file-level merge instructions of one template).
Parsing is a pure transform from raw records to frozen ``TemplateRecord``
instances; persisting any normalization fixes is the caller's job.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from dataclasses import replace as _dc_replace
from pathlib import Path
from typing import Final, Literal

from trellis.dcf import Record, format_bool, parse_bool, read_records
from trellis.errors import (
    DuplicateTemplateName,
    InvalidFieldValue,
    InvalidLocationType,
    InvalidMergeType,
    InvalidTemplateType,
    MissingRequiredField,
)

logger = logging.getLogger(__name__)

TemplateType = Literal["root", "project"]
MergePolicy = Literal["overwrite", "append", "duplicate"]
LocationType = Literal["local", "github"]

TEMPLATE_TYPES: frozenset[str] = frozenset({"root", "project"})
MERGE_POLICIES: frozenset[str] = frozenset({"overwrite", "append", "duplicate"})
LOCATION_TYPES: frozenset[str] = frozenset({"local", "github"})

COMMON_FIELDS: tuple[str, ...] = ("template_type", "content_location", "template_name")
ROOT_FIELDS: tuple[str, ...] = (*COMMON_FIELDS, "target_dir", "default")
PROJECT_FIELDS: tuple[str, ...] = (*COMMON_FIELDS, "merge", "target_dir")

CONFIGURED_FIELD = "templates_configured"
LEGACY_UNCONFIGURED_LOCATION = "NULL"

DEFINITION_FILENAME = "template-definition.dcf"


class Unconfigured:
    """Marker state: no template root has been set up for this installation.

    Distinct from a configured registry that happens to hold zero templates.
    """

    _instance: Unconfigured | None = None

    def __new__(cls) -> Unconfigured:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNCONFIGURED"

    def __bool__(self) -> bool:
        return False


UNCONFIGURED: Final = Unconfigured()


@dataclass(frozen=True)
class TemplateRecord:
    """One validated record of a definition file."""

    template_type: TemplateType
    template_name: str
    content_location: str
    target_dir: str
    location_type: LocationType
    file_location: str
    repo_ref: str | None = None
    merge: MergePolicy | None = None
    default: bool = False

    def to_raw(self) -> Record:
        """Serialize back to the on-disk field set for this record's kind."""
        if self.template_type == "root":
            return {
                "template_type": "root",
                "template_name": self.template_name,
                "content_location": self.content_location,
                "target_dir": self.target_dir,
                "default": format_bool(self.default),
            }
        return {
            "template_type": "project",
            "template_name": self.template_name,
            "content_location": self.content_location,
            "merge": self.merge or "overwrite",
            "target_dir": self.target_dir,
        }


@dataclass(frozen=True)
class Registry:
    """Configured root registry: ordered root records, at most one default."""

    records: tuple[TemplateRecord, ...] = ()

    def __len__(self) -> int:
        return len(self.records)

    def names(self) -> list[str]:
        return [r.template_name for r in self.records]

    @property
    def default(self) -> TemplateRecord | None:
        return next((r for r in self.records if r.default), None)


# ---------------------------------------------------------------------------
# content_location
# ---------------------------------------------------------------------------


def parse_content_location(content_location: str) -> tuple[str, str | None, str]:
    """Split ``scheme:{repo_ref:}path`` into (location_type, repo_ref, file_location).

    Does not validate the scheme; ``parse()`` does that across all records so
    that every offending value is reported at once.
    """
    location_type, sep, rest = content_location.partition(":")
    if not sep:
        return location_type, None, ""
    if location_type == "github":
        repo_ref, _, file_location = rest.partition(":")
        return location_type, repo_ref, file_location
    # Legacy local form carries an empty repo segment: local::/path
    if rest.startswith(":"):
        rest = rest[1:]
    return location_type, None, rest


def is_sentinel(raw_records: Sequence[Mapping[str, str]]) -> bool:
    """True when the records are the 'no templates configured' marker."""
    if len(raw_records) != 1:
        return False
    record = raw_records[0]
    if CONFIGURED_FIELD in record:
        try:
            return not parse_bool(record[CONFIGURED_FIELD])
        except ValueError:
            return False
    return record.get("content_location", "").strip() == LEGACY_UNCONFIGURED_LOCATION


def sentinel_record() -> Record:
    return {CONFIGURED_FIELD: format_bool(False)}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse(raw_records: Sequence[Mapping[str, str]]) -> list[TemplateRecord] | Unconfigured:
    """Validate raw records and build typed TemplateRecords.

    Raises:
        MissingRequiredField, InvalidTemplateType, InvalidMergeType,
        InvalidLocationType, InvalidFieldValue, DuplicateTemplateName
    """
    if is_sentinel(raw_records):
        return UNCONFIGURED

    bad_types = [r.get("template_type", "") for r in raw_records if r.get("template_type") not in TEMPLATE_TYPES]
    # A record with no template_type at all is a missing field, not a bad value
    missing_type = [i for i, r in enumerate(raw_records, start=1) if "template_type" not in r]
    if missing_type:
        raise MissingRequiredField(["template_type"], record=missing_type[0])
    if bad_types:
        raise InvalidTemplateType(bad_types)

    for index, raw in enumerate(raw_records, start=1):
        required = ROOT_FIELDS if raw["template_type"] == "root" else PROJECT_FIELDS
        missing = [f for f in required if f not in raw]
        if missing:
            raise MissingRequiredField(missing, record=index)

    bad_merges = [
        r["merge"] for r in raw_records if r["template_type"] == "project" and r["merge"] not in MERGE_POLICIES
    ]
    if bad_merges:
        raise InvalidMergeType(bad_merges)

    locations = [parse_content_location(r["content_location"]) for r in raw_records]
    bad_locations = [loc[0] for loc in locations if loc[0] not in LOCATION_TYPES]
    if bad_locations:
        raise InvalidLocationType(bad_locations)

    counts = Counter(r["template_name"] for r in raw_records)
    duplicates = [name for name, n in counts.items() if n > 1]
    if duplicates:
        raise DuplicateTemplateName(duplicates)

    records: list[TemplateRecord] = []
    for index, (raw, (location_type, repo_ref, file_location)) in enumerate(
        zip(raw_records, locations, strict=True), start=1
    ):
        is_root = raw["template_type"] == "root"
        default = False
        if is_root:
            try:
                default = parse_bool(raw["default"])
            except ValueError:
                raise InvalidFieldValue("default", raw["default"], record=index) from None
        records.append(
            TemplateRecord(
                template_type=raw["template_type"],  # type: ignore[arg-type]
                template_name=raw["template_name"],
                content_location=raw["content_location"],
                target_dir=raw["target_dir"],
                location_type=location_type,  # type: ignore[arg-type]
                file_location=file_location,
                repo_ref=repo_ref,
                merge=None if is_root else raw["merge"],  # type: ignore[arg-type]
                default=default,
            )
        )
    return records


def parse_file(path: Path) -> list[TemplateRecord] | Unconfigured:
    """Read a definition file from disk and parse it."""
    return parse(read_records(path))


def validate_file(path: Path) -> list[TemplateRecord] | Unconfigured:
    """Parse a definition file, logging what was found. Raises on any error."""
    result = parse_file(path)
    if isinstance(result, Unconfigured):
        logger.info("Definition %s marks templates as not configured", path)
    else:
        kinds = Counter(r.template_type for r in result)
        logger.info("Definition %s is valid: %d root, %d project records", path, kinds["root"], kinds["project"])
    return result


# ---------------------------------------------------------------------------
# Root normalization
# ---------------------------------------------------------------------------


def coerce_default(records: Sequence[TemplateRecord]) -> list[TemplateRecord]:
    """Ensure exactly one record is default.

    With zero or several defaults, the first record in file order becomes the
    default and every other record is cleared.
    """
    if not records:
        return []
    defaults = [r for r in records if r.default]
    if len(defaults) == 1:
        return list(records)
    logger.warning(
        "Found %d default templates, making '%s' the default",
        len(defaults),
        records[0].template_name,
    )
    return [_dc_replace(r, default=(i == 0)) for i, r in enumerate(records)]


def normalize_root(records: Iterable[TemplateRecord]) -> Registry:
    """Keep root records only and apply default coercion."""
    roots = [r for r in records if r.template_type == "root"]
    return Registry(tuple(coerce_default(roots)))


def root_to_raw(registry: Registry | Unconfigured) -> list[Record]:
    """On-disk form of a registry: root fields only, or the sentinel record."""
    if isinstance(registry, Unconfigured):
        return [sentinel_record()]
    return [r.to_raw() for r in registry.records]
