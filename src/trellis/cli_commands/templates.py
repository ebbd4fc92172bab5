"""CLI commands for the template registry: list, add, remove, setdefault, nodefault, clear, load."""

from __future__ import annotations

import json as json_mod
from pathlib import Path

import click

from trellis.cli_common import fail_with, get_store, render_status
from trellis.definitions import Unconfigured
from trellis.errors import TrellisError
from trellis.resolver import coerce_identifier, display_order


@click.group(invoke_without_command=True)
@click.pass_context
def templates(ctx: click.Context) -> None:
    """Manage registered project templates (lists them when no subcommand is given)."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(list_templates)


@templates.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_templates(ctx: click.Context, as_json: bool = False) -> None:
    """List templates in display order, default marked with (*)."""
    store = get_store(ctx)
    try:
        registry = store.read()
    except TrellisError as e:
        fail_with(e)
    if as_json:
        configured = not isinstance(registry, Unconfigured)
        entries = [
            {
                "index": i,
                "name": r.template_name,
                "location": r.content_location,
                "default": r.default,
            }
            for i, r in enumerate(display_order(registry), start=1)
        ]
        click.echo(json_mod.dumps({"configured": configured, "templates": entries}, indent=2))
        return
    click.echo(render_status(registry))


@templates.command()
@click.argument("location")
@click.option("--name", "-n", default=None, help="Template name (default: last segment of the location)")
@click.pass_context
def add(ctx: click.Context, location: str, name: str | None) -> None:
    """Register a template at LOCATION (a path, local:<path> or github:owner/repo[@ref]:<path>)."""
    store = get_store(ctx)
    try:
        record = store.add(location, name=name)
        registry = store.read()
    except TrellisError as e:
        fail_with(e, store)
    click.echo(f"Added template '{record.template_name}' ({record.content_location})")
    click.echo(render_status(registry))


@templates.command()
@click.argument("template")
@click.pass_context
def remove(ctx: click.Context, template: str) -> None:
    """Unregister TEMPLATE (name or index from 'trellis templates list')."""
    store = get_store(ctx)
    try:
        removed = store.remove(coerce_identifier(store.read(), template))
        registry = store.read()
    except TrellisError as e:
        fail_with(e, store)
    click.echo(f"Removed template '{removed.template_name}'")
    click.echo(render_status(registry))


@templates.command()
@click.argument("template")
@click.pass_context
def setdefault(ctx: click.Context, template: str) -> None:
    """Make TEMPLATE (name or index) the default."""
    store = get_store(ctx)
    try:
        store.set_default(coerce_identifier(store.read(), template))
        registry = store.read()
    except TrellisError as e:
        fail_with(e, store)
    click.echo(render_status(registry))


@templates.command()
@click.pass_context
def nodefault(ctx: click.Context) -> None:
    """Drop the explicit default; the first registered template becomes default again."""
    store = get_store(ctx)
    try:
        registry = store.no_default()
    except TrellisError as e:
        fail_with(e, store)
    click.echo(render_status(registry))


@templates.command()
@click.pass_context
def clear(ctx: click.Context) -> None:
    """Remove all templates and mark templates as not configured."""
    store = get_store(ctx)
    try:
        store.clear()
        registry = store.read()
    except TrellisError as e:
        fail_with(e)
    click.echo(render_status(registry))


@templates.command()
@click.argument("definition", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def load(ctx: click.Context, definition: Path) -> None:
    """Validate DEFINITION and install it as the template registry."""
    store = get_store(ctx)
    try:
        registry = store.load_from(definition)
    except TrellisError as e:
        fail_with(e)
    click.echo(f"Loaded template registry from {definition}")
    click.echo(render_status(registry))
