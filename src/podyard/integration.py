"""Wiring generated targets into the user's host project."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, Sequence

from podyard.errors import IntegrationError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from podyard.generator.target_installer import Library
    from podyard.sandbox import Sandbox

logger = logging.getLogger("podyard.integration")

INTEGRATION_FILE = "integration.json"


class HostIntegrator(Protocol):
    def integrate(self, sandbox: "Sandbox", libraries: Sequence["Library"]) -> None:
        ...


class ManifestIntegrator:
    """Record, per user target, which generated files it must consume.

    The manifest lands in ``<project_root>/.podyard/integration.json``; build
    tooling reads it instead of podyard editing project files directly.
    """

    def __init__(self, project_root: Path) -> None:
        self.project_root = Path(project_root)

    @property
    def manifest_path(self) -> Path:
        return self.project_root / ".podyard" / INTEGRATION_FILE

    def _relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.project_root.resolve()).as_posix()
        except ValueError:
            return path.resolve().as_posix()

    def describe(self, sandbox: "Sandbox", libraries: Sequence["Library"]) -> dict:
        targets = {}
        for library in libraries:
            targets[library.target_definition.name] = {
                "label": library.label,
                "platform": library.platform,
                "build_settings": self._relative(library.xcconfig_path(sandbox)),
                "prefix_header": self._relative(library.prefix_header_path(sandbox)),
                "acknowledgements": self._relative(library.acknowledgements_path(sandbox)),
                "packages": [spec.name for spec in library.specs],
            }
        return {
            "sandbox": self._relative(sandbox.root),
            "project": self._relative(sandbox.project_path),
            "targets": targets,
        }

    def integrate(self, sandbox: "Sandbox", libraries: Sequence["Library"]) -> None:
        payload = self.describe(sandbox, libraries)
        path = self.manifest_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        except OSError as exc:
            raise IntegrationError(f"Cannot write {path}: {exc}", original=exc) from exc
        logger.info("Integrated %d target(s) via %s", len(libraries), path)


__all__ = ["HostIntegrator", "INTEGRATION_FILE", "ManifestIntegrator"]
