"""Sandbox-side materialization of resolved packages."""
from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Protocol, runtime_checkable

from podyard.resolution import PackageSpec, TargetDefinition

if TYPE_CHECKING:  # pragma: no cover - typing only
    from podyard.generator.project import BuildProject
    from podyard.generator.target_installer import TargetInstaller
    from podyard.sandbox import Sandbox

logger = logging.getLogger("podyard.sandbox")

_HEADER_SUFFIXES = (".h", ".hh", ".hpp")
_LICENSE_GLOBS = ("LICENSE*", "LICENCE*", "COPYING*")


class DownloadState(str, Enum):
    NOT_FETCHED = "not-fetched"
    FETCHED = "fetched"


@dataclass
class PreInstallContext:
    package: "LocalPackage"
    target_definition: TargetDefinition


@dataclass
class PostInstallContext:
    target_installer: "TargetInstaller"
    spec: PackageSpec


@runtime_checkable
class InstallHooks(Protocol):
    def pre_install(self, context: PreInstallContext) -> None:
        ...

    def post_install(self, context: PostInstallContext) -> None:
        ...


def _expand(root: Path, patterns: Iterable[str]) -> list[Path]:
    found: dict[Path, None] = {}
    for pattern in patterns:
        for match in sorted(root.glob(pattern)):
            if match.is_dir():
                for child in sorted(match.rglob("*")):
                    if child.is_file():
                        found.setdefault(child, None)
            elif match.is_file():
                found.setdefault(match, None)
    return list(found)


class LocalPackage:
    """A registry package living at ``<sandbox>/<name>``.

    ``download_state`` only moves forward through :meth:`mark_fetched`, which
    the install protocol calls once a fetch has fully completed.
    """

    group_name = "Pods"

    def __init__(self, spec: PackageSpec, sandbox: "Sandbox", platform: str) -> None:
        self.spec = spec
        self.sandbox = sandbox
        self.platform = platform
        self.cleaned = False
        self.specific_source: dict[str, Any] | None = None
        self._download_state = DownloadState.NOT_FETCHED

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def root(self) -> Path:
        return self.sandbox.root / self.name

    @property
    def download_state(self) -> DownloadState:
        return self._download_state

    @property
    def is_fetched(self) -> bool:
        return self._download_state is DownloadState.FETCHED

    @property
    def is_local(self) -> bool:
        return False

    @property
    def is_external(self) -> bool:
        return False

    def mark_fetched(self, specific_source: dict[str, Any] | None = None) -> None:
        self._download_state = DownloadState.FETCHED
        if specific_source:
            self.specific_source = dict(specific_source)

    def exists(self) -> bool:
        return self.root.exists()

    def implode(self) -> None:
        """Remove the package root entirely."""

        if self.root.exists():
            logger.debug("Removing %s", self.root)
            shutil.rmtree(self.root)

    # ------------------------------------------------------------------
    # File patterns
    def source_files(self) -> list[Path]:
        return _expand(self.root, self.spec.source_files)

    def header_files(self) -> list[Path]:
        return [path for path in self.source_files() if path.suffix in _HEADER_SUFFIXES]

    def public_header_files(self) -> list[Path]:
        if self.spec.public_header_files:
            return _expand(self.root, self.spec.public_header_files)
        return self.header_files()

    def resource_files(self) -> list[Path]:
        return _expand(self.root, self.spec.resources)

    def license_file(self) -> Path | None:
        if self.spec.license_file:
            candidate = self.root / self.spec.license_file
            return candidate if candidate.is_file() else None
        for pattern in _LICENSE_GLOBS:
            for candidate in sorted(self.root.glob(pattern)):
                if candidate.is_file():
                    return candidate
        return None

    def license_text(self) -> str | None:
        path = self.license_file()
        if path is None:
            return None
        return path.read_text(encoding="utf-8", errors="replace").strip()

    def used_files(self) -> set[Path]:
        used = set(self.source_files())
        used.update(self.public_header_files())
        used.update(self.resource_files())
        used.update(_expand(self.root, self.spec.preserve_paths))
        license_path = self.license_file()
        if license_path is not None:
            used.add(license_path)
        return used

    def clean(self) -> None:
        """Delete every file none of the package patterns refer to."""

        if not self.root.exists():
            return
        used = {path.resolve() for path in self.used_files()}
        for path in sorted(self.root.rglob("*"), reverse=True):
            if path.is_symlink() or path.is_file():
                if path.resolve() not in used:
                    path.unlink()
            elif path.is_dir() and not any(path.iterdir()):
                path.rmdir()
        self.cleaned = True

    # ------------------------------------------------------------------
    # Project wiring
    def add_file_references_to_project(self, project: "BuildProject") -> None:
        group = project.add_pod_group(self.name, local=self.is_local)
        for path in self.source_files():
            project.add_file_reference(group, self._project_relative(path))
        for path in self.resource_files():
            project.add_file_reference(group, self._project_relative(path))

    def link_headers(self) -> list[Path]:
        """Link the package headers into the sandbox header trees.

        Headers are flattened to their file name. When two headers share a
        name the first one (in pattern order) keeps the link; the shadowed
        headers are logged and returned.
        """

        public = self.sandbox.public_headers_root / self.name
        build = self.sandbox.build_headers_root / self.name
        shadowed: list[Path] = []
        for destination_root, headers in (
            (build, self.header_files()),
            (public, self.public_header_files()),
        ):
            linked: dict[str, Path] = {}
            for header in headers:
                first = linked.setdefault(header.name, header)
                if first is not header:
                    logger.warning(
                        "%s: header %s is shadowed by %s",
                        self.name,
                        self._package_relative(header),
                        self._package_relative(first),
                    )
                    if header not in shadowed:
                        shadowed.append(header)
                    continue
                destination = destination_root / header.name
                destination.parent.mkdir(parents=True, exist_ok=True)
                if destination.exists() or destination.is_symlink():
                    destination.unlink()
                os.symlink(header.resolve(), destination)
        return shadowed

    def _package_relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()

    def _project_relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.sandbox.root.resolve()).as_posix()
        except ValueError:
            return path.resolve().as_posix()

    # ------------------------------------------------------------------
    # Hooks
    def pre_install(self, context: PreInstallContext) -> None:
        if self.spec.pre_install is not None:
            self.spec.pre_install(context)

    def post_install(self, context: PostInstallContext) -> None:
        if self.spec.post_install is not None:
            self.spec.post_install(context)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} [{self.platform}] {self._download_state.value}>"


class ExternalPackage(LocalPackage):
    """A package fetched from a source outside the registry."""

    @property
    def is_external(self) -> bool:
        return True

    @property
    def specification_path(self) -> Path:
        return self.sandbox.specifications_root / f"{self.name}.json"

    def store_specification(self) -> Path:
        path = self.specification_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.spec.canonical(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
        return path


class PathPackage(LocalPackage):
    """A package used in place from a directory of the user's choosing.

    Always considered fetched; never imploded or cleaned.
    """

    group_name = "Local Pods"

    def __init__(self, spec: PackageSpec, sandbox: "Sandbox", platform: str) -> None:
        if spec.local_path is None:
            raise ValueError(f"{spec.name} has no local path")
        super().__init__(spec, sandbox, platform)
        self._download_state = DownloadState.FETCHED

    @property
    def root(self) -> Path:
        assert self.spec.local_path is not None
        return self.spec.local_path

    @property
    def is_local(self) -> bool:
        return True

    def implode(self) -> None:
        logger.debug("Not removing locally sourced package %s", self.name)

    def clean(self) -> None:
        logger.debug("Not cleaning locally sourced package %s", self.name)


__all__ = [
    "DownloadState",
    "ExternalPackage",
    "InstallHooks",
    "LocalPackage",
    "PathPackage",
    "PostInstallContext",
    "PreInstallContext",
]
