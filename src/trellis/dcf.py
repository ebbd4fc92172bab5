"""Reader/writer for the record-based definition format.

A file holds one or more records separated by blank lines. Each record is a
set of ``field: value`` lines; a line starting with whitespace continues the
value of the previous field, and a continuation holding only ``.`` stands for
an empty line. Lines starting with ``#`` are comments. Surrounding whitespace
is not part of a value or of any of its lines.

    template_type: root
    template_name: knitr
    content_location: local:/srv/templates/knitr
    target_dir: .
    default: TRUE
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from pathlib import Path

from trellis.errors import DefinitionSyntaxError

_FIELD_RE = re.compile(r"^([A-Za-z0-9_.\-]+)\s*:(.*)$")
_CONTINUATION_INDENT = " " * 8
_EMPTY_LINE = "."

_TRUE_VALUES: frozenset[str] = frozenset({"true", "t", "yes", "y", "1"})
_FALSE_VALUES: frozenset[str] = frozenset({"false", "f", "no", "n", "0"})

Record = dict[str, str]


def parse_records(text: str, *, source: str | Path | None = None) -> list[Record]:
    """Parse record-format text into a list of ordered field dicts.

    Raises:
        DefinitionSyntaxError: On a line that is neither a field, a
            continuation, a comment nor blank, or on a repeated field.
    """
    records: list[Record] = []
    current: Record = {}
    last_field: str | None = None

    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.rstrip()
        if not line.strip():
            if current:
                records.append(current)
            current = {}
            last_field = None
            continue
        if line.startswith("#"):
            continue
        if line[0] in " \t":
            if last_field is None:
                raise DefinitionSyntaxError("continuation line without a field", line=lineno, source=source)
            part = line.strip()
            current[last_field] = f"{current[last_field]}\n{'' if part == _EMPTY_LINE else part}"
            continue
        match = _FIELD_RE.match(line)
        if match is None:
            raise DefinitionSyntaxError(f"expected 'field: value', got {line!r}", line=lineno, source=source)
        name, value = match.group(1), match.group(2).strip()
        if name in current:
            raise DefinitionSyntaxError(f"field '{name}' repeated within one record", line=lineno, source=source)
        current[name] = value
        last_field = name

    if current:
        records.append(current)
    return records


def read_records(path: Path) -> list[Record]:
    """Read and parse a record-format file (UTF-8)."""
    return parse_records(path.read_text(encoding="utf-8"), source=path)


def dump_records(records: Iterable[Mapping[str, str]]) -> str:
    """Serialize records; the output of an empty iterable is the empty string."""
    blocks = []
    for record in records:
        lines = []
        for name, value in record.items():
            first, *rest = str(value).split("\n")
            lines.append(f"{name}: {first}".rstrip())
            lines.extend(f"{_CONTINUATION_INDENT}{part.strip() or _EMPTY_LINE}" for part in rest)
        blocks.append("\n".join(lines))
    if not blocks:
        return ""
    return "\n\n".join(blocks) + "\n"


def write_records(path: Path, records: Iterable[Mapping[str, str]]) -> None:
    path.write_text(dump_records(records), encoding="utf-8")


def parse_bool(value: str) -> bool:
    """Parse a boolean field value (TRUE/FALSE, yes/no, 1/0; case-insensitive)."""
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    msg = f"not a boolean: {value!r}"
    raise ValueError(msg)


def format_bool(value: bool) -> str:
    return "TRUE" if value else "FALSE"
