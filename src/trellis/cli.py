"""CLI for trellis project templates.

Usage:
    trellis templates                          # Show registered templates
    trellis templates add PATH [--name NAME]   # Register a local template directory
    trellis templates add github:owner/repo@main:templates/knitr
    trellis templates remove NAME|INDEX        # Unregister a template
    trellis templates setdefault NAME|INDEX    # Choose the default template
    trellis templates nodefault                # Revert to the first registered template
    trellis templates clear                    # Forget all templates
    trellis templates load FILE                # Install a registry definition file
    trellis validate FILE                      # Validate a definition file
    trellis apply TARGET [NAME|INDEX]          # Merge a template into TARGET
"""

from __future__ import annotations

import click

from trellis import __version__
from trellis.cli_commands.project import apply, validate
from trellis.cli_commands.templates import templates
from trellis.cli_common import get_store
from trellis.logging import enable_console_logging, setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="trellis")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Trellis: project templates for new project directories."""
    store = get_store(ctx)
    setup_logging(store.primary_path.parent)
    if verbose:
        enable_console_logging()


cli.add_command(templates)
cli.add_command(apply)
cli.add_command(validate)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
