"""Retrieve package sources into the sandbox."""
from __future__ import annotations

import hashlib
import logging
import shutil
import subprocess
import tarfile
import tempfile
import uuid
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Protocol

import requests

from podyard.errors import FetchError

from .cache import SourceCache, safe_extract
from .commands import CommandRunner

logger = logging.getLogger("podyard.fetch")

_TAR_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tbz", ".tar.xz", ".txz")


@dataclass
class FetchResult:
    """Outcome of one fetch.

    ``checkout_options`` is set when the fetched revision is more specific
    than what the source named (a branch or head fetch resolved to a commit).
    """

    resolved_revision: str | None = None
    checkout_options: dict[str, Any] | None = None
    from_cache: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


class Fetcher(Protocol):
    def fetch(
        self,
        source: Mapping[str, Any],
        destination: Path,
        *,
        head: bool = False,
        cache_root: Path | None = None,
        max_cache_size_mb: int = 500,
        aggressive_cache: bool = False,
    ) -> FetchResult:
        ...


def _flatten_single_directory(root: Path) -> None:
    children = list(root.iterdir())
    if len(children) != 1 or not children[0].is_dir():
        return
    inner = children[0]
    holder = root / f".flatten-{uuid.uuid4().hex}"
    inner.rename(holder)
    for child in holder.iterdir():
        child.rename(root / child.name)
    holder.rmdir()


class SourceFetcher:
    """Fetch ``git``, ``http`` and ``path`` sources.

    Every fetch stages into a sibling directory of *destination* and is moved
    into place only once complete, so an interrupted fetch leaves the
    destination absent.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        session: requests.Session | None = None,
        timeout: float = 300.0,
        attempts: int = 3,
    ) -> None:
        self.runner = runner or CommandRunner()
        self.session = session or requests.Session()
        self.timeout = timeout
        self.attempts = attempts

    def fetch(
        self,
        source: Mapping[str, Any],
        destination: Path,
        *,
        head: bool = False,
        cache_root: Path | None = None,
        max_cache_size_mb: int = 500,
        aggressive_cache: bool = False,
    ) -> FetchResult:
        destination = Path(destination)
        cache = SourceCache(cache_root, max_cache_size_mb) if cache_root is not None else None
        cache_revision = self._cache_revision(source)
        cacheable = cache is not None and not head and "path" not in source
        reuse = cacheable and (aggressive_cache or "commit" in source or "sha256" in source)

        destination.parent.mkdir(parents=True, exist_ok=True)
        staging = destination.parent / f".{destination.name}.partial-{uuid.uuid4().hex}"
        try:
            staging.mkdir()
            if reuse and cache is not None:
                entry = cache.lookup(source, cache_revision)
                if entry is not None:
                    logger.info("Using cached source for %s", destination.name)
                    cache.restore(entry, staging)
                    self._commit(staging, destination)
                    return FetchResult(resolved_revision=cache_revision, from_cache=True)
            result = self._dispatch(source, staging, head=head)
            if cacheable and cache is not None:
                cache.store(source, cache_revision, staging)
            self._commit(staging, destination)
            return result
        except FetchError:
            raise
        except (OSError, ValueError, subprocess.CalledProcessError, RuntimeError, requests.RequestException,
                tarfile.TarError, zipfile.BadZipFile) as exc:
            raise FetchError(f"Failed to fetch {destination.name}: {exc}", package=destination.name,
                             original=exc) from exc
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

    # ------------------------------------------------------------------
    @staticmethod
    def _cache_revision(source: Mapping[str, Any]) -> str | None:
        for key in ("commit", "tag", "sha256"):
            if source.get(key):
                return str(source[key])
        return None

    @staticmethod
    def _commit(staging: Path, destination: Path) -> None:
        if destination.exists():
            shutil.rmtree(destination)
        staging.rename(destination)

    def _dispatch(self, source: Mapping[str, Any], staging: Path, *, head: bool) -> FetchResult:
        if "git" in source:
            return self._fetch_git(source, staging, head=head)
        if "http" in source:
            return self._fetch_http(source, staging)
        if "path" in source:
            return self._fetch_path(source, staging)
        raise FetchError(f"Unsupported source {dict(source)!r}")

    def _fetch_git(self, source: Mapping[str, Any], staging: Path, *, head: bool) -> FetchResult:
        url = str(source["git"])
        tag = source.get("tag")
        branch = source.get("branch")
        commit = source.get("commit")
        clone = ["git", "clone", "--quiet"]
        if head and branch:
            clone += ["--branch", str(branch)]
        elif not head and not commit and (tag or branch):
            clone += ["--depth", "1", "--branch", str(tag or branch)]
        self.runner.retry([*clone, url, str(staging)], attempts=self.attempts, timeout=self.timeout)
        if commit and not head:
            self.runner.run(["git", "checkout", "--quiet", str(commit)], cwd=staging, timeout=self.timeout)
        if source.get("submodules"):
            self.runner.retry(
                ["git", "submodule", "update", "--init", "--recursive"],
                cwd=staging,
                attempts=self.attempts,
                timeout=self.timeout,
            )
        revision = self.runner.run(["git", "rev-parse", "HEAD"], cwd=staging).stdout.strip()
        checkout_options = None
        if head or not (commit or tag):
            checkout_options = {"git": url, "commit": revision}
        return FetchResult(resolved_revision=revision, checkout_options=checkout_options)

    def _fetch_http(self, source: Mapping[str, Any], staging: Path) -> FetchResult:
        url = str(source["http"])
        filename = url.rsplit("/", 1)[-1].split("?", 1)[0] or "download"
        with tempfile.TemporaryDirectory(dir=staging.parent) as scratch:
            download = Path(scratch) / filename
            with self.session.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                with download.open("wb") as handle:
                    for chunk in response.iter_content(chunk_size=1 << 16):
                        handle.write(chunk)
            expected = source.get("sha256")
            if expected:
                digest = hashlib.sha256(download.read_bytes()).hexdigest()
                if digest != expected:
                    raise FetchError(f"Checksum mismatch for {url}: expected {expected}, got {digest}")
            lowered = filename.lower()
            if lowered.endswith(".zip") or source.get("type") == "zip":
                with zipfile.ZipFile(download) as archive:
                    archive.extractall(staging)
                _flatten_single_directory(staging)
            elif lowered.endswith(_TAR_SUFFIXES) or source.get("type") in {"tgz", "tar", "tbz", "txz"}:
                with tarfile.open(download) as archive:
                    safe_extract(archive, staging)
                _flatten_single_directory(staging)
            else:
                shutil.move(str(download), staging / filename)
        return FetchResult(resolved_revision=source.get("sha256"))

    def _fetch_path(self, source: Mapping[str, Any], staging: Path) -> FetchResult:
        origin = Path(str(source["path"])).expanduser()
        if not origin.is_dir():
            raise FetchError(f"Source directory {origin} does not exist")
        shutil.copytree(origin, staging, symlinks=True, dirs_exist_ok=True)
        return FetchResult()


__all__ = ["FetchResult", "Fetcher", "SourceFetcher"]
