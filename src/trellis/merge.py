"""Apply a template's content onto a target project directory.

Two modes:

- **Simple**: the template is a plain directory tree. Every file and
  directory is copied into the target, overwriting files with the same
  relative path.
- **Advanced**: the template root holds a ``template-definition.dcf`` file
  (or the template location points directly at a definition file). Each
  ``project`` record names a content location, a ``target_dir`` and a merge
  policy (overwrite / append / duplicate).

Template files landing on the project config path are reconciled into the
existing config instead of replacing it.

Nothing here is transactional: a failure part way leaves the target partially
populated, and re-running against the same directory is the recovery path.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from trellis import __version__
from trellis.definitions import (
    DEFINITION_FILENAME,
    MergePolicy,
    Registry,
    TemplateRecord,
    Unconfigured,
    parse_file,
)
from trellis.errors import MergeFailed
from trellis.locations import LocationResolver
from trellis.project_config import DEFAULT_SCHEMA, ConfigSchema, read_project_config, reconcile_file
from trellis.resolver import Identifier, select

logger = logging.getLogger(__name__)

# Never copied out of a template tree
_SKIP_DIRS: frozenset[str] = frozenset({".git", ".hg", ".svn", "__pycache__"})


@dataclass(frozen=True)
class TemplateContent:
    """Materialized content of one selected template."""

    name: str
    root: Path
    definition: Path | None = None

    @property
    def advanced(self) -> bool:
        return self.definition is not None


@dataclass
class MergeReport:
    """What a merge did, as (relative path, action) pairs in order."""

    template: str
    target: Path
    actions: list[tuple[str, str]] = field(default_factory=list)

    def add(self, rel_path: str, action: str) -> None:
        self.actions.append((rel_path, action))

    def paths(self, action: str | None = None) -> list[str]:
        return [p for p, a in self.actions if action is None or a == action]


def load_content(record: TemplateRecord, resolver: LocationResolver) -> TemplateContent:
    """Resolve a registry record to its template content."""
    location = resolver.resolve(record.location_type, record.repo_ref, record.file_location)
    if location.is_file():
        return TemplateContent(record.template_name, location.parent, location)
    definition = location / DEFINITION_FILENAME
    if definition.is_file():
        return TemplateContent(record.template_name, location, definition)
    return TemplateContent(record.template_name, location)


def _walk_files(root: Path) -> Iterator[Path]:
    """Yield files under *root* in a stable order, skipping VCS metadata and definitions."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS)
        for name in sorted(filenames):
            if name == DEFINITION_FILENAME:
                continue
            yield Path(dirpath) / name


def _walk_dirs(root: Path) -> Iterator[Path]:
    """Yield *root* and every directory below it, skipping VCS metadata."""
    yield root
    for dirpath, dirnames, _ in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS)
        for name in dirnames:
            yield Path(dirpath) / name


def duplicate_path(dest: Path) -> Path:
    """First free ``<stem>_<n><suffix>`` sibling of *dest* (n = 1, 2, ...)."""
    stem, suffix = dest.stem, dest.suffix
    n = 1
    while True:
        candidate = dest.with_name(f"{stem}_{n}{suffix}")
        if not candidate.exists():
            return candidate
        n += 1


class MergeEngine:
    """Writes template content into target project directories."""

    def __init__(
        self,
        resolver: LocationResolver,
        *,
        schema: ConfigSchema = DEFAULT_SCHEMA,
        tool_version: str = __version__,
    ) -> None:
        self.resolver = resolver
        self.schema = schema
        self.tool_version = tool_version

    def apply(self, content: TemplateContent, target_dir: Path) -> MergeReport:
        """Merge *content* into *target_dir*.

        Raises:
            MergeFailed: content missing, or a file operation failed.
            DefinitionError: the template's definition file is invalid
                (raised before anything is written).
        """
        target_dir = target_dir.resolve()
        if not target_dir.is_dir():
            raise MergeFailed(f"Target project directory does not exist: {target_dir}", path=target_dir)
        report = MergeReport(template=content.name, target=target_dir)
        if content.definition is not None:
            self._apply_advanced(content.definition, target_dir, report)
        else:
            self._apply_simple(content, target_dir, report)
        logger.info(
            "Applied template '%s' to %s (%d entries)",
            content.name,
            target_dir,
            len(report.actions),
            extra={"template": content.name, "path": str(target_dir)},
        )
        return report

    # -- Modes ------------------------------------------------------------------

    def _apply_simple(self, content: TemplateContent, target_dir: Path, report: MergeReport) -> None:
        if not content.root.is_dir():
            raise MergeFailed(f"Template '{content.name}' content not found: {content.root}", path=content.root)
        for source in _walk_files(content.root):
            dest = target_dir / source.relative_to(content.root)
            self._merge_file(source, dest, "overwrite", target_dir, report)
        self._merge_dirs(content.root, target_dir, target_dir, report)

    def _apply_advanced(self, definition: Path, target_dir: Path, report: MergeReport) -> None:
        parsed = parse_file(definition)
        if isinstance(parsed, Unconfigured):
            logger.warning("Template definition %s defines no content", definition)
            return
        for record in parsed:
            if record.template_type != "project":
                logger.warning(
                    "Ignoring %s record '%s' in template definition %s",
                    record.template_type,
                    record.template_name,
                    definition,
                )
                continue
            source = self.resolver.resolve(
                record.location_type,
                record.repo_ref,
                record.file_location,
                base_dir=definition.parent,
            )
            if not source.exists():
                raise MergeFailed(
                    f"Content for '{record.template_name}' not found: {source}",
                    path=source,
                )
            dest = self._destination(source, record.target_dir, target_dir)
            policy: MergePolicy = record.merge or "overwrite"
            if source.is_dir():
                for src_file in _walk_files(source):
                    self._merge_file(src_file, dest / src_file.relative_to(source), policy, target_dir, report)
                self._merge_dirs(source, dest, target_dir, report)
            else:
                self._merge_file(source, dest, policy, target_dir, report)

    # -- Helpers --------------------------------------------------------------

    @staticmethod
    def _destination(source: Path, target_rel: str, target_dir: Path) -> Path:
        """Where *source* lands for a record's ``target_dir``.

        A source file goes inside ``target_rel`` when that is the project root,
        ends with ``/``, or is an existing directory; otherwise ``target_rel``
        names the destination file itself.
        """
        base = (target_dir / target_rel).resolve()
        if not base.is_relative_to(target_dir):
            raise MergeFailed(f"target_dir escapes the project directory: {target_rel!r}", path=base)
        if source.is_dir():
            return base
        if target_rel in ("", ".") or target_rel.endswith("/") or base.is_dir():
            return base / source.name
        return base

    def _merge_file(
        self,
        source: Path,
        dest: Path,
        policy: MergePolicy,
        target_dir: Path,
        report: MergeReport,
    ) -> None:
        rel = dest.relative_to(target_dir).as_posix()
        try:
            if dest.is_dir():
                raise MergeFailed(f"Cannot write {rel}: a directory is in the way", path=dest)
            if rel == self.schema.path and policy != "duplicate":
                overrides = read_project_config(source) or {}
                reconcile_file(dest, overrides, self.schema, self.tool_version)
                action = "reconcile"
            elif policy == "append" and dest.exists():
                with open(dest, "ab") as out:
                    out.write(source.read_bytes())
                action = "append"
            elif policy == "duplicate" and dest.exists():
                dest = duplicate_path(dest)
                shutil.copyfile(source, dest)
                rel = dest.relative_to(target_dir).as_posix()
                action = "duplicate"
            else:
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(source, dest)
                action = "write"
        except OSError as exc:
            raise MergeFailed(f"Failed to {policy} {rel}: {exc}", path=dest) from exc
        logger.debug("%s %s", action, rel, extra={"path": rel, "action": action})
        report.add(rel, action)

    def _merge_dirs(self, source_root: Path, dest_root: Path, target_dir: Path, report: MergeReport) -> None:
        """Create directories of the source tree that no file landed in."""
        for src_dir in _walk_dirs(source_root):
            dest = dest_root / src_dir.relative_to(source_root)
            if dest.is_dir():
                continue
            rel = dest.relative_to(target_dir).as_posix()
            if dest.exists():
                raise MergeFailed(f"Cannot create directory {rel}: a file is in the way", path=dest)
            try:
                dest.mkdir(parents=True)
            except OSError as exc:
                raise MergeFailed(f"Failed to create directory {rel}: {exc}", path=dest) from exc
            logger.debug("mkdir %s", rel, extra={"path": rel, "action": "mkdir"})
            report.add(rel, "mkdir")


def apply_template(
    registry: Registry | Unconfigured,
    target_dir: Path,
    identifier: Identifier | None = None,
    *,
    resolver: LocationResolver | None = None,
    schema: ConfigSchema = DEFAULT_SCHEMA,
    tool_version: str = __version__,
) -> MergeReport:
    """Select a template from *registry* and merge it into *target_dir*.

    Remote checkouts made along the way are removed afterwards unless a
    caller-owned *resolver* is passed in.
    """
    record = select(registry, identifier)
    owned = resolver is None
    active = resolver if resolver is not None else LocationResolver()
    try:
        content = load_content(record, active)
        return MergeEngine(active, schema=schema, tool_version=tool_version).apply(content, target_dir)
    finally:
        if owned:
            active.cleanup()
