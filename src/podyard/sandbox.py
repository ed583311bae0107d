"""The on-disk workspace holding fetched packages and generated artifacts."""
from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any

import yaml

from podyard.lockfile import InstallationRecord
from podyard.packages import ExternalPackage, LocalPackage, PathPackage
from podyard.paths import ensure_directory
from podyard.resolution import PackageSpec

logger = logging.getLogger("podyard.sandbox")

MANIFEST_NAME = "Manifest.lock"
PROJECT_FILE_NAME = "Pods.project.json"


class Sandbox:
    """Owns every package root below :attr:`root`.

    Package objects are cached by ``(name, platform)`` so repeated lookups in
    one run always return the same instance.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._packages: dict[tuple[str, str], LocalPackage] = {}
        self._checkout_sources: dict[str, dict[str, Any]] = {}

    # ------------------------------------------------------------------
    # Layout
    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_NAME

    @property
    def project_path(self) -> Path:
        return self.root / PROJECT_FILE_NAME

    @property
    def headers_root(self) -> Path:
        return self.root / "Headers"

    @property
    def public_headers_root(self) -> Path:
        return self.headers_root / "Public"

    @property
    def build_headers_root(self) -> Path:
        return self.headers_root / "Private"

    @property
    def target_support_files_root(self) -> Path:
        return self.root / "Target Support Files"

    @property
    def specifications_root(self) -> Path:
        return self.root / "Local Podspecs"

    @property
    def documentation_root(self) -> Path:
        return self.root / "Documentation"

    @property
    def state_root(self) -> Path:
        return self.root / ".podyard"

    @property
    def journal_root(self) -> Path:
        return self.state_root / "runs"

    def support_files_dir(self, label: str) -> Path:
        return self.target_support_files_root / label

    def create(self) -> Path:
        return ensure_directory(self.root)

    # ------------------------------------------------------------------
    def previous_record(self) -> InstallationRecord | None:
        """Read back the manifest written by the last successful run.

        An unreadable manifest counts as absent, so every package is
        reconsidered.
        """

        if not self.manifest_path.is_file():
            return None
        try:
            return InstallationRecord.from_file(self.manifest_path)
        except (yaml.YAMLError, ValueError) as exc:
            logger.warning("Ignoring unreadable manifest %s: %s", self.manifest_path, exc)
            return None

    def prepare_for_install(self) -> list[Path]:
        """Remove the derived trees that every run regenerates from scratch."""

        removed: list[Path] = []
        for path in (
            self.headers_root,
            self.target_support_files_root,
            self.specifications_root,
        ):
            if path.exists():
                logger.debug("Removing %s", path)
                shutil.rmtree(path)
                removed.append(path)
        return removed

    # ------------------------------------------------------------------
    # Package constructors
    def local_package_for_spec(
        self,
        spec: PackageSpec,
        platform: str,
        *,
        external: bool = False,
    ) -> LocalPackage | None:
        """Return the package for *spec*, or ``None`` when it cannot build for *platform*."""

        if not _supports(spec, platform):
            logger.warning("%s does not support platform %s; skipping", spec.name, platform)
            return None
        key = (spec.name, platform)
        package = self._packages.get(key)
        if package is None:
            package_type = ExternalPackage if external else LocalPackage
            package = package_type(spec, self, platform)
            self._packages[key] = package
        return package

    def path_package_for_spec(self, spec: PackageSpec, platform: str) -> PathPackage | None:
        if not _supports(spec, platform):
            logger.warning("%s does not support platform %s; skipping", spec.name, platform)
            return None
        key = (spec.name, platform)
        package = self._packages.get(key)
        if package is None:
            package = PathPackage(spec, self, platform)
            self._packages[key] = package
        assert isinstance(package, PathPackage)
        return package

    def package_named(self, name: str, platform: str) -> LocalPackage | None:
        return self._packages.get((name, platform))

    # ------------------------------------------------------------------
    # Checkout sources
    def store_checkout_source(self, name: str, source: dict[str, Any]) -> None:
        """Remember the exact revision a package was fetched at."""

        self._checkout_sources[name] = dict(source)

    def discard_checkout_source(self, name: str) -> None:
        self._checkout_sources.pop(name, None)

    def load_checkout_sources(self, record: InstallationRecord | None) -> None:
        if record is None:
            return
        for name, source in record.checkout_options.items():
            self._checkout_sources.setdefault(name, dict(source))

    @property
    def checkout_sources(self) -> dict[str, dict[str, Any]]:
        return dict(self._checkout_sources)

    def __repr__(self) -> str:
        return f"<Sandbox {self.root}>"


def _supports(spec: PackageSpec, platform: str) -> bool:
    return spec.platform in {platform, "any"}


__all__ = ["MANIFEST_NAME", "PROJECT_FILE_NAME", "Sandbox"]
