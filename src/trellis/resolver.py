"""Select one template from the registry by name, 1-based ordinal, or default.

Ordinals index into the display order: the default template first, then the
remaining templates sorted by name. The order is recomputed from the registry
snapshot on every call and never stored.
"""

from __future__ import annotations

import re

from trellis.definitions import Registry, TemplateRecord, Unconfigured
from trellis.errors import NoDefaultTemplate, TemplateIndexOutOfRange, TemplateNotFound

Identifier = str | int

# ASCII only: str.isdigit() also accepts superscripts that int() rejects
_INDEX_RE = re.compile(r"[0-9]+")


def display_order(registry: Registry | Unconfigured) -> list[TemplateRecord]:
    if isinstance(registry, Unconfigured):
        return []
    return sorted(registry.records, key=lambda r: (not r.default, r.template_name))


def display_lines(registry: Registry | Unconfigured) -> list[str]:
    """Numbered listing with the default marked, e.g. ``1.(*) knitr``."""
    return [
        f"{i}.{'(*) ' if r.default else '    '}{r.template_name}"
        for i, r in enumerate(display_order(registry), start=1)
    ]


def select(registry: Registry | Unconfigured, identifier: Identifier | None = None) -> TemplateRecord:
    """Pick the template matching *identifier*, or the default when None.

    Raises:
        NoDefaultTemplate: identifier is None and there is no default.
        TemplateIndexOutOfRange: integer identifier outside 1..len(registry).
        TemplateNotFound: no template has exactly this name.
    """
    if identifier is None:
        if isinstance(registry, Unconfigured):
            raise NoDefaultTemplate()
        default = registry.default
        if default is None:
            raise NoDefaultTemplate("No default template: no templates registered")
        return default

    if isinstance(identifier, bool):
        msg = f"Template identifier must be a name or an index, got {identifier!r}"
        raise TypeError(msg)

    ordered = display_order(registry)
    if isinstance(identifier, int):
        if not 1 <= identifier <= len(ordered):
            raise TemplateIndexOutOfRange(identifier, len(ordered))
        return ordered[identifier - 1]

    for record in ordered:
        if record.template_name == identifier:
            return record
    raise TemplateNotFound(identifier)


def coerce_identifier(registry: Registry | Unconfigured, raw: str) -> Identifier:
    """Interpret user input: an exact name wins, otherwise digits mean an index."""
    if not isinstance(registry, Unconfigured) and raw in registry.names():
        return raw
    if _INDEX_RE.fullmatch(raw):
        return int(raw)
    return raw
