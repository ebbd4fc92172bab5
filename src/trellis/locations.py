"""Resolve template content locations to local paths.

``local`` locations are filesystem paths used as-is (existence is checked by
the merge engine when the content is consumed). ``github`` locations are
materialized into a temporary checkout by a ``Fetcher``.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Protocol

from trellis.errors import RemoteFetchFailed

logger = logging.getLogger(__name__)

_REPO_PART_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")

DEFAULT_GITHUB_URL = "https://github.com"
FETCH_TIMEOUT_SECONDS = 120.0


def parse_repo_ref(repo_ref: str) -> tuple[str, str, str | None]:
    """Split ``owner/repo[@ref]`` into (owner, repo, ref).

    ``ref`` is None when absent, meaning the repository's primary branch.
    """
    owner_repo, _, ref = repo_ref.partition("@")
    owner, sep, repo = owner_repo.partition("/")
    if not sep or not _REPO_PART_RE.match(owner) or not _REPO_PART_RE.match(repo):
        raise RemoteFetchFailed(repo_ref, "expected owner/repo[@ref]")
    return owner, repo, ref or None


class Fetcher(Protocol):
    """Materializes a remote repository into a local directory."""

    def fetch(self, owner: str, repo: str, ref: str | None) -> Path: ...


class GitFetcher:
    """Fetch repositories with a shallow ``git clone`` into a temp directory."""

    def __init__(self, base_url: str = DEFAULT_GITHUB_URL, *, timeout: float = FETCH_TIMEOUT_SECONDS) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def fetch(self, owner: str, repo: str, ref: str | None) -> Path:
        repo_ref = f"{owner}/{repo}" + (f"@{ref}" if ref else "")
        git = shutil.which("git")
        if git is None:
            raise RemoteFetchFailed(repo_ref, "git is not installed or not on PATH")

        checkout = Path(tempfile.mkdtemp(prefix=f"trellis-{repo}-"))
        cmd = [git, "clone", "--quiet", "--depth", "1"]
        if ref:
            cmd += ["--branch", ref]
        cmd += [f"{self.base_url}/{owner}/{repo}.git", str(checkout)]

        logger.info("Fetching %s", repo_ref)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout, check=False)
        except subprocess.TimeoutExpired:
            shutil.rmtree(checkout, ignore_errors=True)
            raise RemoteFetchFailed(repo_ref, f"git clone timed out after {self.timeout:.0f}s") from None
        except OSError as exc:
            shutil.rmtree(checkout, ignore_errors=True)
            raise RemoteFetchFailed(repo_ref, str(exc)) from exc
        if result.returncode != 0:
            shutil.rmtree(checkout, ignore_errors=True)
            detail = result.stderr.strip() or f"exit code {result.returncode}"
            raise RemoteFetchFailed(repo_ref, f"git clone failed: {detail}")
        return checkout


class LocationResolver:
    """Turns (location_type, repo_ref, path) into a local path.

    Remote checkouts are cached per (owner, repo, ref) so that a template
    definition with many records against the same repository fetches it once.
    Call ``cleanup()`` when done to remove temporary checkouts.
    """

    def __init__(self, fetcher: Fetcher | None = None) -> None:
        self._fetcher: Fetcher = fetcher if fetcher is not None else GitFetcher()
        self._checkouts: dict[tuple[str, str, str | None], Path] = {}

    def resolve(
        self,
        location_type: str,
        repo_ref: str | None,
        path: str,
        *,
        base_dir: Path | None = None,
    ) -> Path:
        if location_type == "local":
            local = Path(path).expanduser()
            if base_dir is not None and not local.is_absolute():
                local = base_dir / local
            return local
        if location_type == "github":
            if not repo_ref:
                raise RemoteFetchFailed("", "missing owner/repo in github location")
            key = parse_repo_ref(repo_ref)
            checkout = self._checkouts.get(key)
            if checkout is None:
                checkout = self._fetcher.fetch(*key)
                self._checkouts[key] = checkout
            return checkout / path.lstrip("/") if path else checkout
        # Location types are validated at parse time
        msg = f"Unsupported location type: {location_type!r}"
        raise ValueError(msg)

    def cleanup(self) -> None:
        """Remove temporary checkouts created by the default git fetcher."""
        for checkout in self._checkouts.values():
            if isinstance(self._fetcher, GitFetcher):
                shutil.rmtree(checkout, ignore_errors=True)
        self._checkouts.clear()

    def __enter__(self) -> LocationResolver:
        return self

    def __exit__(self, *exc: object) -> None:
        self.cleanup()
