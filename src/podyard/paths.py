"""Centralized helpers for resolving project directories and caches."""
from __future__ import annotations

import os
from pathlib import Path

_PROJECT_MARKERS: tuple[str, ...] = (
    "podyard.yml",
    "podyard.yaml",
    "podyard.lock",
    ".git",
)

DEFAULT_SANDBOX_DIR = "Pods"
DEFAULT_LOCKFILE_NAME = "podyard.lock"
DEFAULT_RECIPE_NAME = "podyard.yml"
DEFAULT_RESOLUTION_NAME = "podyard.resolved.yml"


def _looks_like_project(path: Path) -> bool:
    return any((path / marker).exists() for marker in _PROJECT_MARKERS)


def project_root(start: Path | None = None) -> Path:
    """Best-effort detection of the project checkout root.

    ``PODYARD_PROJECT_ROOT`` wins; otherwise the nearest parent of *start*
    (default: the working directory) holding a project marker is used.
    """

    env_root = os.environ.get("PODYARD_PROJECT_ROOT")
    if env_root:
        candidate = Path(env_root).expanduser()
        if candidate.exists():
            return candidate.resolve()

    base = Path(start or Path.cwd()).resolve()
    for parent in (base, *base.parents):
        if _looks_like_project(parent):
            return parent
    return base


def default_cache_root() -> Path:
    env = os.environ.get("PODYARD_CACHE")
    if env:
        return Path(env).expanduser().resolve()
    try:
        home = Path.home()
    except RuntimeError:
        home = Path.cwd()
    return (home / ".cache" / "podyard").resolve()


def ensure_directory(path: Path) -> Path:
    """Create ``path`` if missing and return it."""

    path.mkdir(parents=True, exist_ok=True)
    return path


__all__ = [
    "DEFAULT_LOCKFILE_NAME",
    "DEFAULT_RECIPE_NAME",
    "DEFAULT_RESOLUTION_NAME",
    "DEFAULT_SANDBOX_DIR",
    "default_cache_root",
    "ensure_directory",
    "project_root",
]
