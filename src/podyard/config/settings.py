"""Typed install configuration derived from a recipe."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping

from podyard.paths import DEFAULT_LOCKFILE_NAME, DEFAULT_SANDBOX_DIR, default_cache_root

from .recipes import Recipe


def parse_bool(value: Any, path: str) -> bool:
    """
    Strict boolean parsing to avoid bool('false') footguns.

    Accepts True/False, 0/1 and the strings true/false/1/0/yes/no/on/off
    (case-insensitive). Anything else raises ``ValueError`` naming *path*.
    """

    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value in (0, 1):
            return bool(value)
        raise ValueError(f"Invalid boolean for {path}: {value!r}")
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes", "on"}:
            return True
        if normalized in {"false", "0", "no", "off"}:
            return False
    raise ValueError(f"Invalid boolean for {path}: {value!r}")


def parse_int(value: Any, path: str, *, minimum: int | None = None) -> int:
    if value is None:
        raise ValueError(f"Invalid config value for {path}: None")
    if isinstance(value, bool):
        raise ValueError(f"Invalid config type for {path}: expected int, got bool")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = int(value.strip())
        except ValueError as exc:
            raise ValueError(f"Invalid config value for {path}: must be an int") from exc
    else:
        raise ValueError(f"Invalid config type for {path}: expected int")
    if minimum is not None and parsed < minimum:
        raise ValueError(f"Invalid config value for {path}: must be >= {minimum}")
    return parsed


def _parse_optional_path(value: Any, path: str) -> Path | None:
    if value in (None, ""):
        return None
    if not isinstance(value, (str, Path)):
        raise ValueError(f"Invalid config type for {path}: expected a path")
    return Path(value).expanduser()


@dataclass(frozen=True)
class InstallConfig:
    """Options scoped to one pipeline run.

    Passed explicitly into :class:`podyard.install.Installer`; nothing here is
    process-wide state.
    """

    project_root: Path
    sandbox_dir: str = DEFAULT_SANDBOX_DIR
    lockfile_name: str = DEFAULT_LOCKFILE_NAME
    clean: bool = True
    generate_docs: bool = False
    install_docs: bool = False
    aggressive_cache: bool = False
    integrate_targets: bool = True
    update_mode: bool = False
    jobs: int = 1
    continue_on_failure: bool = False
    cache_root: Path | None = None
    max_cache_size: int = 500
    verbose: bool = False

    @property
    def sandbox_root(self) -> Path:
        return self.project_root / self.sandbox_dir

    @property
    def lockfile_path(self) -> Path:
        return self.project_root / self.lockfile_name

    @property
    def source_cache_root(self) -> Path:
        return (self.cache_root or default_cache_root()) / "sources"

    def with_overrides(self, **changes: Any) -> "InstallConfig":
        return replace(self, **changes)

    @classmethod
    def from_mapping(cls, project_root: Path, data: Mapping[str, Any]) -> "InstallConfig":
        env_cache = os.environ.get("PODYARD_CACHE")
        cache_value = data.get("cache_root") or env_cache
        return cls(
            project_root=Path(project_root).resolve(),
            sandbox_dir=str(data.get("sandbox_dir") or DEFAULT_SANDBOX_DIR),
            lockfile_name=str(data.get("lockfile_name") or DEFAULT_LOCKFILE_NAME),
            clean=parse_bool(data.get("clean", True), "config.clean"),
            generate_docs=parse_bool(data.get("generate_docs", False), "config.generate_docs"),
            install_docs=parse_bool(data.get("install_docs", False), "config.install_docs"),
            aggressive_cache=parse_bool(data.get("aggressive_cache", False), "config.aggressive_cache"),
            integrate_targets=parse_bool(data.get("integrate_targets", True), "config.integrate_targets"),
            update_mode=parse_bool(data.get("update_mode", False), "config.update_mode"),
            jobs=parse_int(data.get("jobs", 1), "config.jobs", minimum=1),
            continue_on_failure=parse_bool(
                data.get("continue_on_failure", False), "config.continue_on_failure"
            ),
            cache_root=_parse_optional_path(cache_value, "config.cache_root"),
            max_cache_size=parse_int(data.get("max_cache_size", 500), "config.max_cache_size", minimum=0),
            verbose=parse_bool(data.get("verbose", False), "config.verbose"),
        )

    @classmethod
    def from_recipe(cls, project_root: Path, recipe: Recipe) -> "InstallConfig":
        return cls.from_mapping(project_root, recipe.config)


__all__ = ["InstallConfig", "parse_bool", "parse_int"]
