"""Shared pytest fixtures for trellis tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from click.testing import CliRunner

from trellis.locations import LocationResolver
from trellis.store import RegistryStore, StoreConfig


class FakeFetcher:
    """Stands in for git: serves pre-built checkouts and records calls."""

    def __init__(self, checkouts: dict[str, Path] | None = None) -> None:
        self.checkouts = checkouts or {}
        self.calls: list[tuple[str, str, str | None]] = []

    def fetch(self, owner: str, repo: str, ref: str | None) -> Path:
        self.calls.append((owner, repo, ref))
        return self.checkouts[f"{owner}/{repo}"]


@pytest.fixture
def store_config(tmp_path: Path) -> StoreConfig:
    return StoreConfig(
        primary_path=tmp_path / "home" / "templates.dcf",
        backup_path=tmp_path / "backup" / "templates.dcf.bak",
    )


@pytest.fixture
def store(store_config: StoreConfig) -> RegistryStore:
    """Fresh RegistryStore in a temp directory (nothing written yet)."""
    return RegistryStore(store_config)


@pytest.fixture
def template_dirs(tmp_path: Path) -> dict[str, Path]:
    """Two plain-directory templates.

    template1: readme.md + config/global.dcf setting ``template: 1``.
    template2: readme.md + an outdated config (old version, data_loading off).
    """
    root = tmp_path / "templates"
    t1 = root / "template1"
    (t1 / "config").mkdir(parents=True)
    (t1 / "readme.md").write_text("# Template 1\n")
    (t1 / "config" / "global.dcf").write_text("template: 1\n")

    t2 = root / "template2"
    (t2 / "config").mkdir(parents=True)
    (t2 / "src").mkdir()
    (t2 / "readme.md").write_text("# Template 2\n")
    (t2 / "src" / "analysis.R").write_text("library(ggplot2)\n")
    (t2 / "config" / "global.dcf").write_text("version: 0.1\ndata_loading: FALSE\ntemplate: 2\n")
    return {"template1": t1, "template2": t2}


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A target project that already has scaffold content."""
    target = tmp_path / "project"
    (target / "config").mkdir(parents=True)
    (target / ".gitignore").write_text("*.tmp\n")
    (target / "readme.md").write_text("# Scaffold readme\n")
    return target


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def resolver(fake_fetcher: FakeFetcher) -> LocationResolver:
    return LocationResolver(fetcher=fake_fetcher)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def trellis_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> StoreConfig:
    """Point TRELLIS_HOME / TRELLIS_BACKUP_DIR at temp directories."""
    home = tmp_path / "trellis-home"
    backup = tmp_path / "trellis-backup"
    monkeypatch.setenv("TRELLIS_HOME", str(home))
    monkeypatch.setenv("TRELLIS_BACKUP_DIR", str(backup))
    return StoreConfig.from_env()
