"""Fixtures for CLI interface tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from trellis.cli import cli
from trellis.store import StoreConfig


@pytest.fixture(autouse=True)
def _reset_trellis_logger() -> Generator[None, None, None]:
    """Every invocation attaches a file handler under the temp home; drop it afterwards."""
    yield
    logger = logging.getLogger("trellis")
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def cli_with_templates(
    cli_runner: CliRunner, trellis_env: StoreConfig, template_dirs: dict[str, Path]
) -> CliRunner:
    """Register template1 (default) and template2 through the CLI."""
    for name in ("template1", "template2"):
        result = cli_runner.invoke(cli, ["templates", "add", str(template_dirs[name])])
        assert result.exit_code == 0, result.output
    return cli_runner
