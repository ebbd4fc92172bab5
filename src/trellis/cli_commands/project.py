"""CLI commands that use templates: apply, validate."""

from __future__ import annotations

import json as json_mod
from pathlib import Path

import click

from trellis.cli_common import fail_with, get_store
from trellis.definitions import Unconfigured, validate_file
from trellis.errors import TrellisError
from trellis.merge import apply_template
from trellis.resolver import coerce_identifier


@click.command()
@click.argument("target", type=click.Path(file_okay=False, path_type=Path))
@click.argument("template", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def apply(ctx: click.Context, target: Path, template: str | None, as_json: bool) -> None:
    """Merge TEMPLATE (name or index; default template if omitted) into TARGET.

    TARGET is created when it does not exist yet.
    """
    store = get_store(ctx)
    try:
        registry = store.read()
        identifier = coerce_identifier(registry, template) if template is not None else None
        target.mkdir(parents=True, exist_ok=True)
        report = apply_template(registry, target, identifier)
    except TrellisError as e:
        fail_with(e, store)

    if as_json:
        click.echo(
            json_mod.dumps(
                {
                    "template": report.template,
                    "target": str(report.target),
                    "files": [{"path": p, "action": a} for p, a in report.actions],
                },
                indent=2,
            )
        )
        return
    click.echo(f"Applied template '{report.template}' to {report.target}")
    for rel_path, action in report.actions:
        click.echo(f"  {action:<9} {rel_path}")


@click.command()
@click.argument("definition", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(definition: Path) -> None:
    """Check that DEFINITION is a valid template definition file."""
    try:
        result = validate_file(definition)
    except TrellisError as e:
        fail_with(e)
    if isinstance(result, Unconfigured):
        click.echo(f"{definition}: valid (templates not configured)")
        return
    click.echo(f"{definition}: valid, {len(result)} record(s)")
    for record in result:
        detail = record.merge if record.template_type == "project" else ("default" if record.default else "")
        click.echo(f"  {record.template_type:<8} {record.template_name:<20} {record.target_dir:<16} {detail}".rstrip())
