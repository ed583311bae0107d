"""Resolver output consumed by the installer.

The resolver itself lives elsewhere; this module defines the values it hands
over (:class:`PackageSpec`, :class:`TargetDefinition`, :class:`Resolution`)
and the :class:`SandboxStateDiff` contract, plus a loader for resolutions
serialized as YAML or JSON.
"""
from __future__ import annotations

import hashlib
import importlib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Sequence

import yaml
from packaging.version import InvalidVersion, Version

from podyard.errors import ResolutionError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from podyard.lockfile import InstallationRecord

HookCallable = Callable[[Any], None]

DEFAULT_PLATFORM = "ios"


def load_callable(reference: str) -> HookCallable:
    """Import ``"module:attribute"`` and return the attribute."""

    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise ResolutionError(f"Invalid hook reference {reference!r}; expected 'module:attribute'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ResolutionError(f"Cannot import hook module {module_name!r}", original=exc) from exc
    target: Any = module
    for part in attribute.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise ResolutionError(f"Hook {reference!r} not found", original=exc) from exc
    if not callable(target):
        raise ResolutionError(f"Hook {reference!r} is not callable")
    return target


def _as_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(item) for item in value)


@dataclass(frozen=True)
class PackageSpec:
    """A resolved package as produced by the resolver. Immutable for the run."""

    name: str
    version: str
    platform: str = DEFAULT_PLATFORM
    source: Mapping[str, Any] = field(default_factory=dict)
    head: bool = False
    local_path: Path | None = None
    source_files: tuple[str, ...] = ()
    public_header_files: tuple[str, ...] = ()
    resources: tuple[str, ...] = ()
    preserve_paths: tuple[str, ...] = ()
    frameworks: tuple[str, ...] = ()
    libraries: tuple[str, ...] = ()
    license: str | None = None
    license_file: str | None = None
    summary: str = ""
    homepage: str | None = None
    authors: tuple[str, ...] = ()
    pre_install: HookCallable | None = field(default=None, compare=False, repr=False)
    post_install: HookCallable | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        name = (self.name or "").strip()
        if not name:
            raise ResolutionError("Package name cannot be empty")
        if "/" in name or name in {".", ".."} or any(char.isspace() for char in name):
            raise ResolutionError(f"Invalid package name {name!r}", package=name)
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "version", str(self.version).strip())
        object.__setattr__(self, "source", dict(self.source or {}))

    @property
    def is_local(self) -> bool:
        """``True`` when the package is path based and never fetched."""

        return self.local_path is not None

    @property
    def display_version(self) -> str:
        return f"{self.version} (HEAD)" if self.head else self.version

    def canonical(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "head": self.head,
            "platform": self.platform,
            "source": dict(self.source),
            "local_path": str(self.local_path) if self.local_path is not None else None,
            "source_files": list(self.source_files),
            "public_header_files": list(self.public_header_files),
            "resources": list(self.resources),
            "preserve_paths": list(self.preserve_paths),
            "frameworks": list(self.frameworks),
            "libraries": list(self.libraries),
        }

    def checksum(self) -> str:
        payload = json.dumps(self.canonical(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha1(payload.encode("utf-8")).hexdigest()

    def __str__(self) -> str:
        return f"{self.name} ({self.display_version})"

    @classmethod
    def from_mapping(
        cls,
        name: str,
        data: Mapping[str, Any],
        *,
        platform: str = DEFAULT_PLATFORM,
        base_dir: Path | None = None,
    ) -> "PackageSpec":
        source = dict(data.get("source") or {})
        local_value = data.get("path") or source.get("path")
        local_path: Path | None = None
        if local_value:
            local_path = Path(str(local_value)).expanduser()
            if not local_path.is_absolute() and base_dir is not None:
                local_path = (base_dir / local_path).resolve()
            source = {"path": str(local_value)}
        version = data.get("version")
        if version is None:
            raise ResolutionError(f"Package {name!r} has no resolved version", package=name)
        hooks = data.get("hooks") or {}
        pre_install = hooks.get("pre_install")
        post_install = hooks.get("post_install")
        return cls(
            name=name,
            version=str(version),
            platform=str(data.get("platform") or platform),
            source=source,
            head=bool(data.get("head", False)),
            local_path=local_path,
            source_files=_as_tuple(data.get("source_files")),
            public_header_files=_as_tuple(data.get("public_header_files")),
            resources=_as_tuple(data.get("resources")),
            preserve_paths=_as_tuple(data.get("preserve_paths")),
            frameworks=_as_tuple(data.get("frameworks")),
            libraries=_as_tuple(data.get("libraries")),
            license=data.get("license"),
            license_file=data.get("license_file"),
            summary=str(data.get("summary") or ""),
            homepage=data.get("homepage"),
            authors=_as_tuple(data.get("authors")),
            pre_install=load_callable(pre_install) if isinstance(pre_install, str) else pre_install,
            post_install=load_callable(post_install) if isinstance(post_install, str) else post_install,
        )


@dataclass(frozen=True)
class TargetDefinition:
    """A named build target requesting a subset of packages."""

    name: str
    platform: str = DEFAULT_PLATFORM
    dependencies: tuple[str, ...] = ()

    @property
    def label(self) -> str:
        return "Pods" if self.name == "default" else f"Pods-{self.name}"

    @property
    def is_empty(self) -> bool:
        return not self.dependencies


@dataclass
class ProjectDefinition:
    """The user's project declaration: ordered targets plus project-wide hooks."""

    targets: tuple[TargetDefinition, ...] = ()
    path: Path | None = None
    pre_install: HookCallable | None = None
    post_install: HookCallable | None = None

    def target_named(self, name: str) -> TargetDefinition:
        for target in self.targets:
            if target.name == name:
                return target
        raise KeyError(name)

    def dependencies(self) -> list[str]:
        names: dict[str, None] = {}
        for target in self.targets:
            for dependency in target.dependencies:
                names.setdefault(dependency, None)
        return sorted(names, key=str.lower)

    def run_pre_install(self, installer: Any) -> None:
        if self.pre_install is not None:
            self.pre_install(installer)

    def run_post_install(self, installer: Any) -> None:
        if self.post_install is not None:
            self.post_install(installer)


def _versions_differ(old: str | None, new: str) -> bool:
    if old is None:
        return True
    try:
        return Version(old) != Version(new)
    except InvalidVersion:
        return old != new


@dataclass(frozen=True)
class SandboxStateDiff:
    """Classification of every known package relative to the previous record."""

    added: frozenset[str] = frozenset()
    changed: frozenset[str] = frozenset()
    deleted: frozenset[str] = frozenset()
    unchanged: frozenset[str] = frozenset()

    @classmethod
    def compute(
        cls,
        previous: "InstallationRecord | None",
        specs: Iterable[PackageSpec],
        *,
        external_sources: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> "SandboxStateDiff":
        """Compare the newly resolved *specs* against *previous*.

        A missing record classifies every package as added.
        """

        external_sources = external_sources or {}
        added: set[str] = set()
        changed: set[str] = set()
        unchanged: set[str] = set()
        names: set[str] = set()
        for spec in specs:
            if spec.name in names:
                continue
            names.add(spec.name)
            if previous is None or spec.name not in previous.package_names:
                added.add(spec.name)
                continue
            stale = (
                _versions_differ(previous.version_of(spec.name), spec.version)
                or previous.checksum_of(spec.name) != spec.checksum()
                or dict(previous.external_source_of(spec.name) or {})
                != dict(external_sources.get(spec.name) or {})
            )
            (changed if stale else unchanged).add(spec.name)
        deleted = set(previous.package_names) - names if previous is not None else set()
        return cls(
            added=frozenset(added),
            changed=frozenset(changed),
            deleted=frozenset(deleted),
            unchanged=frozenset(unchanged),
        )

    def validate(self, names: Iterable[str]) -> None:
        """Raise :class:`ResolutionError` unless the partition covers *names* exactly once."""

        buckets = (self.added, self.changed, self.unchanged)
        for name in names:
            hits = sum(1 for bucket in buckets if name in bucket)
            if hits != 1:
                raise ResolutionError(
                    f"Sandbox state lists package in {hits} of added/changed/unchanged",
                    package=name,
                )
        overlap = self.deleted & (self.added | self.changed | self.unchanged)
        if overlap:
            raise ResolutionError(
                f"Sandbox state marks resolved packages as deleted: {sorted(overlap)}"
            )

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.changed or self.deleted)

    def as_dict(self) -> dict[str, list[str]]:
        return {
            "added": sorted(self.added, key=str.lower),
            "changed": sorted(self.changed, key=str.lower),
            "deleted": sorted(self.deleted, key=str.lower),
            "unchanged": sorted(self.unchanged, key=str.lower),
        }


@dataclass
class Resolution:
    """Everything the resolver hands to the installer for one run."""

    project: ProjectDefinition
    specs_by_target: dict[TargetDefinition, list[PackageSpec]]
    external_source_names: frozenset[str] = frozenset()
    sandbox_state: SandboxStateDiff | None = None

    @property
    def specifications(self) -> list[PackageSpec]:
        unique: dict[str, PackageSpec] = {}
        for specs in self.specs_by_target.values():
            for spec in specs:
                unique.setdefault(spec.name, spec)
        return sorted(unique.values(), key=lambda spec: spec.name.lower())

    def external_sources(self) -> dict[str, dict[str, Any]]:
        return {
            spec.name: dict(spec.source)
            for spec in self.specifications
            if spec.name in self.external_source_names
        }


def _read_mapping(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix in {".yml", ".yaml"}:
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ResolutionError(f"Resolution file {path} must contain a mapping")
    return data


def resolution_from_mapping(data: Mapping[str, Any], *, base_dir: Path | None = None) -> Resolution:
    """Build a :class:`Resolution` from a serialized resolver result."""

    platform = str(data.get("platform") or DEFAULT_PLATFORM)
    raw_packages = data.get("packages") or {}
    if not isinstance(raw_packages, Mapping):
        raise ResolutionError("'packages' must map package names to specifications")
    specs = {
        str(name): PackageSpec.from_mapping(str(name), entry or {}, platform=platform, base_dir=base_dir)
        for name, entry in raw_packages.items()
    }

    targets: list[TargetDefinition] = []
    specs_by_target: dict[TargetDefinition, list[PackageSpec]] = {}
    for entry in data.get("targets") or []:
        target_name = str(entry.get("name") or "default")
        dependencies = _as_tuple(entry.get("dependencies"))
        target = TargetDefinition(
            name=target_name,
            platform=str(entry.get("platform") or platform),
            dependencies=dependencies,
        )
        resolved: list[PackageSpec] = []
        for package_name in _as_tuple(entry.get("packages")) or dependencies:
            spec = specs.get(package_name)
            if spec is None:
                raise ResolutionError(
                    "Target requests a package the resolver did not resolve",
                    package=package_name,
                    target=target_name,
                )
            resolved.append(spec)
        targets.append(target)
        specs_by_target[target] = resolved

    hooks = data.get("hooks") or {}
    pre_install = hooks.get("pre_install")
    post_install = hooks.get("post_install")
    project = ProjectDefinition(
        targets=tuple(targets),
        path=Path(data["project_file"]) if data.get("project_file") else None,
        pre_install=load_callable(pre_install) if isinstance(pre_install, str) else None,
        post_install=load_callable(post_install) if isinstance(post_install, str) else None,
    )
    external_names = set(_as_tuple(data.get("external_sources")))
    external_names.update(name for name, entry in raw_packages.items() if (entry or {}).get("external"))
    return Resolution(
        project=project,
        specs_by_target=specs_by_target,
        external_source_names=frozenset(external_names),
    )


def load_resolution(path: Path | str) -> Resolution:
    """Read a resolver result from a YAML or JSON file."""

    resolved_path = Path(path)
    if not resolved_path.is_file():
        raise ResolutionError(f"Resolution file not found: {resolved_path}")
    data = _read_mapping(resolved_path)
    return resolution_from_mapping(data, base_dir=resolved_path.parent)


__all__ = [
    "DEFAULT_PLATFORM",
    "PackageSpec",
    "ProjectDefinition",
    "Resolution",
    "SandboxStateDiff",
    "TargetDefinition",
    "load_callable",
    "load_resolution",
    "resolution_from_mapping",
]
