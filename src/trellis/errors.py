"""Exception hierarchy for trellis.

Definition errors are fatal: a malformed definition file is never partially
accepted. Lookup errors are recoverable by the caller (prompt again, list the
available templates) but are never silently defaulted.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path


class TrellisError(Exception):
    """Base class for every error trellis raises on purpose."""


# ---------------------------------------------------------------------------
# Definition / validation errors
# ---------------------------------------------------------------------------


class DefinitionError(TrellisError, ValueError):
    """A definition file is malformed or carries invalid values."""


class DefinitionSyntaxError(DefinitionError):
    """The record format itself could not be parsed."""

    def __init__(self, message: str, *, line: int | None = None, source: str | Path | None = None) -> None:
        self.line = line
        self.source = str(source) if source is not None else None
        where = ""
        if self.source is not None:
            where = f"{self.source}"
        if line is not None:
            where = f"{where}:{line}" if where else f"line {line}"
        super().__init__(f"{where}: {message}" if where else message)


class InvalidTemplateType(DefinitionError):
    def __init__(self, values: Iterable[str], *, source: str | Path | None = None) -> None:
        self.values = sorted(set(values))
        self.source = str(source) if source is not None else None
        where = f" in {self.source}" if self.source else ""
        super().__init__(
            f"Invalid template types{where}: {', '.join(self.values)} (must be one of: project, root)"
        )


class InvalidMergeType(DefinitionError):
    def __init__(self, values: Iterable[str]) -> None:
        self.values = sorted(set(values))
        super().__init__(
            f"Invalid merge types: {', '.join(self.values)} (must be one of: append, duplicate, overwrite)"
        )


class InvalidLocationType(DefinitionError):
    def __init__(self, values: Iterable[str]) -> None:
        self.values = sorted(set(values))
        super().__init__(f"Invalid location types: {', '.join(self.values)} (must be one of: github, local)")


class MissingRequiredField(DefinitionError):
    def __init__(self, fields: Iterable[str], *, record: int | None = None) -> None:
        self.fields = sorted(set(fields))
        self.record = record
        where = f" in record {record}" if record is not None else ""
        super().__init__(f"Missing template field{where}: {', '.join(self.fields)}")


class InvalidFieldValue(DefinitionError):
    def __init__(self, field: str, value: str, *, record: int | None = None) -> None:
        self.field = field
        self.value = value
        self.record = record
        where = f" in record {record}" if record is not None else ""
        super().__init__(f"Invalid value for '{field}'{where}: {value!r}")


class DuplicateTemplateName(DefinitionError):
    def __init__(self, names: Iterable[str]) -> None:
        self.names = sorted(set(names))
        super().__init__(f"Duplicate template name found in template_name field: {', '.join(self.names)}")


# ---------------------------------------------------------------------------
# Lookup errors
# ---------------------------------------------------------------------------


class TemplateLookupError(TrellisError, LookupError):
    """A template could not be selected from the registry."""


class NoDefaultTemplate(TemplateLookupError):
    def __init__(self, message: str = "No default template: templates are not configured") -> None:
        super().__init__(message)


class TemplateNotFound(TemplateLookupError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Template not found: {name!r}")


class TemplateIndexOutOfRange(TemplateLookupError):
    def __init__(self, index: int, count: int) -> None:
        self.index = index
        self.count = count
        if count == 0:
            msg = f"Template index {index} out of range: no templates registered"
        else:
            msg = f"Template index {index} out of range (1-{count})"
        super().__init__(msg)


# ---------------------------------------------------------------------------
# Operational errors
# ---------------------------------------------------------------------------


class RemoteFetchFailed(TrellisError):
    def __init__(self, repo_ref: str, reason: str) -> None:
        self.repo_ref = repo_ref
        self.reason = reason
        super().__init__(f"Failed to fetch {repo_ref}: {reason}")


class MergeFailed(TrellisError):
    def __init__(self, message: str, *, path: str | Path | None = None) -> None:
        self.path = str(path) if path is not None else None
        super().__init__(message)


class RegistryCorrupted(TrellisError):
    def __init__(self, path: str | Path, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Template registry {self.path} is unreadable and no usable backup exists: {reason}")
