"""Persistent root registry of template sources, with a backup copy.

The primary file lives under the trellis home directory; an identical backup
is written on every save so the registry survives upgrades or reinstalls that
wipe the primary location. Reads restore from the backup when the primary is
missing or unreadable.
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import re
import shutil
from collections.abc import Generator
from dataclasses import dataclass
from dataclasses import replace as _dc_replace
from pathlib import Path

from trellis.dcf import dump_records, read_records
from trellis.definitions import (
    LOCATION_TYPES,
    UNCONFIGURED,
    Registry,
    TemplateRecord,
    Unconfigured,
    normalize_root,
    parse,
    parse_content_location,
    parse_file,
    root_to_raw,
)
from trellis.errors import (
    DefinitionSyntaxError,
    DuplicateTemplateName,
    InvalidFieldValue,
    InvalidLocationType,
    MissingRequiredField,
    NoDefaultTemplate,
    RegistryCorrupted,
)
from trellis.resolver import Identifier, select

logger = logging.getLogger(__name__)

HOME_ENV = "TRELLIS_HOME"
BACKUP_DIR_ENV = "TRELLIS_BACKUP_DIR"
REGISTRY_FILENAME = "templates.dcf"
BACKUP_FILENAME = "templates.dcf.bak"

# Two or more letters so that Windows drive letters read as paths.
_SCHEME_RE = re.compile(r"^([a-z]{2,}):")


def write_atomic(path: Path, content: str) -> None:
    """Write content to path atomically via temp file + os.replace()."""
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise


@dataclass(frozen=True)
class StoreConfig:
    """Where the registry and its backup live."""

    primary_path: Path
    backup_path: Path
    create_backup_dir: bool = True

    @classmethod
    def from_env(cls) -> StoreConfig:
        home = Path(os.environ.get(HOME_ENV) or Path.home() / ".trellis").expanduser()
        backup_dir = Path(os.environ.get(BACKUP_DIR_ENV) or Path.home() / ".config" / "trellis").expanduser()
        return cls(primary_path=home / REGISTRY_FILENAME, backup_path=backup_dir / BACKUP_FILENAME)


class RegistryStore:
    """Read/write the root template registry with backup and file locking."""

    def __init__(self, config: StoreConfig) -> None:
        self.config = config

    @property
    def primary_path(self) -> Path:
        return self.config.primary_path

    @property
    def backup_path(self) -> Path:
        return self.config.backup_path

    # -- Low-level file handling ----------------------------------------------

    def _write_text(self, content: str) -> None:
        self.primary_path.parent.mkdir(parents=True, exist_ok=True)
        write_atomic(self.primary_path, content)

        backup_dir = self.backup_path.parent
        if not backup_dir.is_dir():
            if not self.config.create_backup_dir:
                logger.warning("Backup directory %s does not exist, skipping registry backup", backup_dir)
                return
            backup_dir.mkdir(parents=True, exist_ok=True)
        write_atomic(self.backup_path, content)

    @contextlib.contextmanager
    def _locked(self) -> Generator[None, None, None]:
        """Hold an exclusive lock on the registry for a read-modify-write cycle."""
        self.primary_path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = self.primary_path.with_suffix(self.primary_path.suffix + ".lock")
        with open(lock_path, "w") as lock_fd:
            fcntl.flock(lock_fd, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_fd, fcntl.LOCK_UN)

    def ensure_initialized(self) -> None:
        """Write the 'not configured' marker if the primary file is absent."""
        if self.primary_path.exists():
            return
        logger.info("Initializing template registry at %s", self.primary_path)
        self._write_text(dump_records(root_to_raw(UNCONFIGURED)))

    def restore_from_backup(self) -> bool:
        """Copy the backup over the primary. Returns False if there is no backup."""
        if not self.backup_path.is_file():
            return False
        self.primary_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.backup_path, self.primary_path)
        logger.warning("Restored template registry %s from backup %s", self.primary_path, self.backup_path)
        return True

    def _load_raw(self) -> list[dict[str, str]]:
        """Read raw records, falling back to the backup when the primary is unreadable."""
        try:
            return read_records(self.primary_path)
        except (OSError, UnicodeDecodeError, DefinitionSyntaxError) as exc:
            logger.warning("Template registry %s is unreadable: %s", self.primary_path, exc)
            reason = str(exc)
        try:
            raw = read_records(self.backup_path)
        except (OSError, UnicodeDecodeError, DefinitionSyntaxError) as exc:
            raise RegistryCorrupted(self.primary_path, f"{reason}; backup: {exc}") from exc
        self.restore_from_backup()
        return raw

    # -- Public API -----------------------------------------------------------

    def read(self) -> Registry | Unconfigured:
        """Load, validate and normalize the registry.

        Normalization fixes (default coercion) are written back so they are
        not re-applied on every read.

        Raises:
            RegistryCorrupted: primary and backup are both unreadable.
            DefinitionError: the registry content is invalid.
        """
        if not self.primary_path.exists():
            self.restore_from_backup()
        self.ensure_initialized()

        raw = self._load_raw()
        parsed = parse(raw)
        if isinstance(parsed, Unconfigured):
            return UNCONFIGURED

        registry = normalize_root(parsed)
        normalized = dump_records(root_to_raw(registry))
        if normalized != dump_records(raw):
            logger.info("Saving normalized template registry to %s", self.primary_path)
            self._write_text(normalized)
        return registry

    def write(self, registry: Registry | Unconfigured) -> None:
        """Persist root fields to both the primary file and the backup."""
        self._write_text(dump_records(root_to_raw(registry)))

    def clear(self) -> None:
        """Reset to the 'not configured' state."""
        with self._locked():
            for path in (self.primary_path, self.backup_path):
                with contextlib.suppress(FileNotFoundError):
                    path.unlink()
            self.ensure_initialized()
        logger.info("Cleared template registry")

    # -- Mutations --------------------------------------------------------------

    def add(self, location: str, name: str | None = None) -> TemplateRecord:
        """Register a new root template.

        *location* is a ``local:`` or ``github:`` content location; a bare path
        is taken as a local directory. Without *name* the last path segment of
        the location is used.
        """
        content_location = _normalize_location(location)
        location_type, repo_ref, file_location = parse_content_location(content_location)
        if not name:
            name = _derive_name(file_location, repo_ref)
        _check_name(name)

        with self._locked():
            current = self.read()
            records = _records(current)
            if name in (r.template_name for r in records):
                raise DuplicateTemplateName([name])
            record = TemplateRecord(
                template_type="root",
                template_name=name,
                content_location=content_location,
                target_dir=".",
                location_type=location_type,  # type: ignore[arg-type]
                file_location=file_location,
                repo_ref=repo_ref,
                default=not records,
            )
            records.append(record)
            self.write(Registry(tuple(records)))
        logger.info("Added template '%s' at %s", name, content_location)
        return record

    def remove(self, identifier: Identifier) -> TemplateRecord:
        """Unregister a template by name or display index.

        Removing the default hands the default to the first remaining record.
        """
        with self._locked():
            current = self.read()
            target = select(current, identifier)
            records = _records(current)
            remaining = [r for r in records if r.template_name != target.template_name]
            self.write(normalize_root(remaining))
        logger.info("Removed template '%s'", target.template_name)
        return target

    def set_default(self, identifier: Identifier) -> TemplateRecord:
        with self._locked():
            current = self.read()
            target = select(current, identifier)
            updated = tuple(
                _dc_replace(r, default=r.template_name == target.template_name) for r in _records(current)
            )
            self.write(Registry(updated))
        logger.info("Default template is now '%s'", target.template_name)
        return _dc_replace(target, default=True)

    def no_default(self) -> Registry:
        """Clear every default flag.

        The next read coerces the first record in file order back to default,
        so this reverts an explicit choice to the first-registered template.
        """
        with self._locked():
            current = self.read()
            if isinstance(current, Unconfigured):
                raise NoDefaultTemplate()
            cleared = [_dc_replace(r, default=False) for r in current.records]
            self.write(Registry(tuple(cleared)))
        logger.info("Cleared default template flag")
        return normalize_root(cleared)

    def load_from(self, path: Path) -> Registry | Unconfigured:
        """Validate a definition file and install it as the root registry."""
        parsed = parse_file(path)
        registry: Registry | Unconfigured = UNCONFIGURED if isinstance(parsed, Unconfigured) else normalize_root(parsed)
        with self._locked():
            self.write(registry)
        logger.info("Loaded template registry from %s", path)
        return registry


def _records(registry: Registry | Unconfigured) -> list[TemplateRecord]:
    return [] if isinstance(registry, Unconfigured) else list(registry.records)


def _normalize_location(location: str) -> str:
    """Return a content location string; a bare path becomes ``local:<abs path>``."""
    match = _SCHEME_RE.match(location)
    if match is None:
        return f"local:{Path(location).expanduser().resolve()}"
    if match.group(1) not in LOCATION_TYPES:
        raise InvalidLocationType([match.group(1)])
    return location


def _check_name(name: str) -> None:
    """A name must survive a write and re-read of the registry unchanged."""
    if not name or name != name.strip() or any(c in name for c in "\r\n"):
        raise InvalidFieldValue("template_name", name)


def _derive_name(file_location: str, repo_ref: str | None) -> str:
    name = Path(file_location.rstrip("/")).name if file_location else ""
    if not name and repo_ref:
        name = repo_ref.partition("@")[0].rpartition("/")[2]
    if not name:
        raise MissingRequiredField(["template_name"])
    return name
