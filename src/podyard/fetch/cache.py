"""Bounded blob cache for fetched package sources."""
from __future__ import annotations

import hashlib
import json
import logging
import os
import tarfile
import tempfile
import time
from pathlib import Path
from typing import Any, Mapping

from podyard.paths import ensure_directory

logger = logging.getLogger("podyard.fetch")

_SUFFIX = ".tar.gz"


def cache_key(source: Mapping[str, Any], revision: str | None = None) -> str:
    digest = hashlib.sha256()
    digest.update(json.dumps(dict(source), sort_keys=True, default=str).encode("utf-8"))
    if revision:
        digest.update(b"\0")
        digest.update(revision.encode("utf-8"))
    return digest.hexdigest()


def safe_extract(archive: tarfile.TarFile, destination: Path) -> None:
    if hasattr(tarfile, "data_filter"):
        archive.extractall(destination, filter="data")
        return
    root = destination.resolve()
    for member in archive.getmembers():
        target = (destination / member.name).resolve()
        if root != target and root not in target.parents:
            raise ValueError(f"Refusing to extract {member.name!r} outside {destination}")
    archive.extractall(destination)


class SourceCache:
    """Tarballs of fetched trees under *root*, evicted least-recently-used first.

    Other runs may read the same directory concurrently; entries are written to
    a temporary name and moved into place so readers never see partial files.
    A ``max_size_mb`` of zero disables the cache.
    """

    def __init__(self, root: Path, max_size_mb: int = 500) -> None:
        self.root = Path(root)
        self.max_size_mb = max_size_mb

    @property
    def enabled(self) -> bool:
        return self.max_size_mb > 0

    @property
    def max_bytes(self) -> int:
        return self.max_size_mb * 1024 * 1024

    def path_for(self, key: str) -> Path:
        return self.root / f"{key}{_SUFFIX}"

    def lookup(self, source: Mapping[str, Any], revision: str | None = None) -> Path | None:
        if not self.enabled:
            return None
        path = self.path_for(cache_key(source, revision))
        if not path.is_file():
            return None
        now = time.time()
        try:
            os.utime(path, (now, now))
        except OSError:
            logger.debug("Could not touch cache entry %s", path)
        return path

    def restore(self, entry: Path, destination: Path) -> None:
        destination.mkdir(parents=True, exist_ok=True)
        with tarfile.open(entry, "r:gz") as archive:
            safe_extract(archive, destination)

    def store(self, source: Mapping[str, Any], revision: str | None, tree: Path) -> Path | None:
        if not self.enabled:
            return None
        ensure_directory(self.root)
        target = self.path_for(cache_key(source, revision))
        handle, temp_name = tempfile.mkstemp(prefix=".partial-", suffix=_SUFFIX, dir=self.root)
        os.close(handle)
        temp_path = Path(temp_name)
        try:
            with tarfile.open(temp_path, "w:gz") as archive:
                for child in sorted(tree.iterdir()):
                    archive.add(child, arcname=child.name)
            os.replace(temp_path, target)
        finally:
            if temp_path.exists():
                temp_path.unlink()
        logger.debug("Cached %s as %s", tree, target.name)
        self.prune()
        return target

    def entries(self) -> list[Path]:
        if not self.root.is_dir():
            return []
        return [path for path in self.root.glob(f"*{_SUFFIX}") if not path.name.startswith(".partial-")]

    def size(self) -> int:
        return sum(path.stat().st_size for path in self.entries())

    def prune(self) -> list[Path]:
        """Evict the oldest entries until the cache fits its size limit."""

        entries = sorted(self.entries(), key=lambda path: path.stat().st_mtime)
        total = sum(path.stat().st_size for path in entries)
        evicted: list[Path] = []
        while entries and total > self.max_bytes:
            oldest = entries.pop(0)
            size = oldest.stat().st_size
            try:
                oldest.unlink()
            except FileNotFoundError:
                pass
            total -= size
            evicted.append(oldest)
            logger.debug("Evicted cache entry %s", oldest.name)
        return evicted


__all__ = ["SourceCache", "cache_key", "safe_extract"]
