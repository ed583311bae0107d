"""Recipe parsing utilities for installation runs."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Sequence, cast

import yaml

from podyard.paths import DEFAULT_RECIPE_NAME

if TYPE_CHECKING:  # pragma: no cover - typing only
    from podyard.install.phases import InstallPhase

_PHASE_KEYS: tuple[str, ...] = (
    "analyze",
    "registry",
    "decision",
    "clean-global",
    "clean-removed",
    "install-packages",
    "generate-targets",
    "write-records",
    "integrate",
)

_DEFAULT_RECIPE: dict[str, Any] = {
    "name": "default",
    "config": {
        "sandbox_dir": "Pods",
        "lockfile_name": "podyard.lock",
        "clean": True,
        "generate_docs": False,
        "install_docs": False,
        "aggressive_cache": False,
        "integrate_targets": True,
        "update_mode": False,
        "jobs": 1,
        "continue_on_failure": False,
        "cache_root": None,
        "max_cache_size": 500,
    },
    "phases": {key: {} for key in _PHASE_KEYS},
}


@dataclass
class Recipe:
    """Structured representation of an install recipe."""

    name: str
    data: dict[str, Any] = field(default_factory=dict)
    source: Path | None = None

    @property
    def config(self) -> dict[str, Any]:
        base = dict(_DEFAULT_RECIPE["config"])
        base.update(self.data.get("config", {}))
        return base

    def phase_config(self, phase: str | InstallPhase) -> dict[str, Any]:
        key = getattr(phase, "value", phase)
        phases = self.data.get("phases", {})
        raw = phases.get(key, {})
        if isinstance(raw, dict):
            return dict(raw)
        if raw is None:
            return {}
        return {"value": raw}

    def as_dict(self) -> dict[str, Any]:
        payload = dict(_DEFAULT_RECIPE)
        payload.update(self.data)
        payload["name"] = self.name
        return payload


class RecipeLoader:
    """Load recipes from JSON/YAML files with inheritance support."""

    def __init__(self, search_paths: Sequence[Path] | None = None, *, project_root: Path | None = None) -> None:
        root = Path(project_root or Path.cwd())
        default_paths: list[Path] = [
            root,
            root / ".podyard" / "recipes",
            Path.cwd(),
        ]
        candidates: list[Path] = list(search_paths or []) + default_paths
        seen: set[str] = set()
        self.search_paths: list[Path] = []
        for candidate in candidates:
            key = str(candidate)
            if key in seen:
                continue
            seen.add(key)
            self.search_paths.append(candidate)
        self._loading: set[str] = set()

    def load(
        self,
        identifier: str | Path | None,
        *,
        overrides: Mapping[str, Any] | None = None,
    ) -> Recipe:
        """Load *identifier*, falling back to the defaults when none is given.

        ``None`` looks for ``podyard.yml`` along the search path and returns the
        built-in defaults when it is absent.
        """

        if identifier is None:
            try:
                path = self._resolve(DEFAULT_RECIPE_NAME)
            except FileNotFoundError:
                data = merge_dicts(_DEFAULT_RECIPE, {})
                if overrides:
                    data = merge_dicts(data, {"config": dict(overrides)})
                return Recipe(name="default", data=data)
        else:
            path = self._resolve(identifier)
        data = self._read_recipe(path)
        name = data.get("name") or path.stem
        merged = self._merge_extends(data, path.parent)
        if overrides:
            merged = merge_dicts(merged, {"config": dict(overrides)})
        return Recipe(name=name, data=merged, source=path)

    # ------------------------------------------------------------------
    def _merge_extends(self, data: dict[str, Any], base_dir: Path | None) -> dict[str, Any]:
        extends = data.get("extends", [])
        if isinstance(extends, str):
            extends = [extends]
        if not extends:
            return merge_dicts(_DEFAULT_RECIPE, data)
        merged: dict[str, Any] = {}
        for entry in extends:
            parent_path = self._resolve(entry, base_dir=base_dir)
            key = str(parent_path)
            if key in self._loading:
                raise RuntimeError(f"Circular recipe extends detected: {parent_path}")
            self._loading.add(key)
            try:
                parent_data = self._read_recipe(parent_path)
                parent_merged = self._merge_extends(parent_data, parent_path.parent)
            finally:
                self._loading.discard(key)
            merged = merge_dicts(merged, parent_merged)
        merged = merge_dicts(merged, data)
        return merged

    def _resolve(self, identifier: str | Path, *, base_dir: Path | None = None) -> Path:
        candidate = Path(identifier)
        if not candidate.suffix:
            for suffix in (".yml", ".yaml", ".json"):
                try:
                    return self._resolve(candidate.with_suffix(suffix), base_dir=base_dir)
                except FileNotFoundError:
                    continue
        if candidate.is_absolute():
            if candidate.exists():
                return candidate
            raise FileNotFoundError(candidate)
        search_space: list[Path] = []
        if base_dir is not None:
            search_space.append(base_dir)
        search_space.extend(self.search_paths)
        for root in search_space:
            path = root / candidate
            if path.is_file():
                return path
        raise FileNotFoundError(f"Recipe '{identifier}' not found in {[str(p) for p in search_space]}")

    def _read_recipe(self, path: Path) -> dict[str, Any]:
        text = path.read_text(encoding="utf-8")
        if path.suffix in {".yml", ".yaml"}:
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
        if not isinstance(data, dict):
            raise TypeError(f"Recipe file {path} must contain a mapping")
        return data


def merge_dicts(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge two dictionaries."""

    result: dict[str, Any] = dict(base)
    for key, value in override.items():
        existing = result.get(key)
        if isinstance(value, Mapping) and isinstance(existing, Mapping):
            result[key] = merge_dicts(
                cast(Mapping[str, Any], existing),
                cast(Mapping[str, Any], value),
            )
        elif isinstance(value, list) and isinstance(existing, list):
            result[key] = [*existing, *value]
        else:
            result[key] = value
    return result


__all__ = ["Recipe", "RecipeLoader", "merge_dicts"]
