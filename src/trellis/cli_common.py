"""Shared CLI helpers.

Provides ``get_store()``, ``fail_with()`` and status rendering so that ``cli.py``
and the ``cli_commands/*.py`` modules can share them without circular imports.
"""

from __future__ import annotations

import sys
from typing import NoReturn

import click

from trellis.definitions import Registry, Unconfigured
from trellis.errors import TemplateLookupError, TrellisError
from trellis.resolver import display_lines
from trellis.store import RegistryStore, StoreConfig

NOT_CONFIGURED_MESSAGE = (
    "Custom templates are not configured for this installation.\n"
    "Run 'trellis templates add <location>' to register a template."
)
NO_TEMPLATES_MESSAGE = "No templates are registered.\nRun 'trellis templates add <location>' to register one."
DEFAULT_HINT = "If no template is given to 'trellis apply', the default (*) is used."


def get_store(ctx: click.Context) -> RegistryStore:
    """Return the registry store for this invocation (built from the environment once)."""
    ctx.ensure_object(dict)
    store = ctx.obj.get("store")
    if store is None:
        store = RegistryStore(StoreConfig.from_env())
        ctx.obj["store"] = store
    return store


def render_status(registry: Registry | Unconfigured) -> str:
    """Human-readable registry status: unconfigured, empty, or the listing."""
    if isinstance(registry, Unconfigured):
        return NOT_CONFIGURED_MESSAGE
    if not registry.records:
        return NO_TEMPLATES_MESSAGE
    return "\n".join(["The following templates are available:", *display_lines(registry), DEFAULT_HINT])


def fail_with(exc: TrellisError, store: RegistryStore | None = None) -> NoReturn:
    """Report a trellis error; lookup errors also list what is available."""
    click.echo(f"Error: {exc}", err=True)
    if isinstance(exc, TemplateLookupError) and store is not None:
        try:
            click.echo(render_status(store.read()), err=True)
        except TrellisError:
            pass  # registry unreadable, report the original error only
    sys.exit(1)
