"""Build the registry of package objects for a resolution."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Mapping

from podyard.errors import ResolutionError
from podyard.packages import LocalPackage
from podyard.resolution import PackageSpec, TargetDefinition
from podyard.sandbox import Sandbox

logger = logging.getLogger("podyard.install")

Registry = dict[TargetDefinition, list[LocalPackage]]


def _check_materializable(specs_by_target: Mapping[TargetDefinition, Iterable[PackageSpec]]) -> None:
    for target, specs in specs_by_target.items():
        for spec in specs:
            if spec.local_path is not None and not spec.local_path.is_dir():
                raise ResolutionError(
                    f"Local package directory {spec.local_path} does not exist",
                    package=spec.name,
                    target=target.name,
                )


def build_registry(
    specs_by_target: Mapping[TargetDefinition, Iterable[PackageSpec]],
    sandbox: Sandbox,
    *,
    external_names: Iterable[str] = (),
) -> tuple[Registry, list[LocalPackage]]:
    """Return per-target package lists and the global list sorted by lowercased name.

    The global list holds one package per root: when a spec is built for
    several platforms, the first platform's object drives fetch, docs and
    cleaning, while each target keeps its own object.

    Every spec is validated before any package object is created, so an
    unresolvable spec aborts without touching the sandbox.
    """

    _check_materializable(specs_by_target)
    external = frozenset(external_names)
    registry: Registry = {}
    for target, specs in specs_by_target.items():
        packages: list[LocalPackage] = []
        seen: set[int] = set()
        for spec in specs:
            if spec.is_local:
                package: LocalPackage | None = sandbox.path_package_for_spec(spec, target.platform)
            else:
                package = sandbox.local_package_for_spec(
                    spec,
                    target.platform,
                    external=spec.name in external,
                )
            if package is None or id(package) in seen:
                continue
            seen.add(id(package))
            packages.append(package)
        registry[target] = packages

    unique: dict[tuple[str, Path], LocalPackage] = {}
    for packages in registry.values():
        for package in packages:
            unique.setdefault((package.name, package.root), package)
    ordered = sorted(unique.values(), key=lambda package: package.name.lower())
    logger.debug("Registry holds %d package(s) across %d target(s)", len(ordered), len(registry))
    return registry, ordered


__all__ = ["Registry", "build_registry"]
