"""Markdown reference pages for installed packages."""
from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:  # pragma: no cover - typing only
    from podyard.packages import LocalPackage
    from podyard.sandbox import Sandbox

logger = logging.getLogger("podyard.generator")


class DocsGenerator(Protocol):
    def already_installed(self, package: "LocalPackage") -> bool:
        ...

    def generate(self, package: "LocalPackage", *, install: bool = False) -> Path:
        ...


class MarkdownDocsGenerator:
    """Write ``Documentation/<name>/<version>/index.md`` inside the sandbox.

    With ``install=True`` the page is also copied below *install_root* so it
    outlives the sandbox.
    """

    def __init__(self, sandbox: "Sandbox", *, install_root: Path | None = None) -> None:
        self.sandbox = sandbox
        self.install_root = install_root

    def documentation_dir(self, package: "LocalPackage") -> Path:
        return self.sandbox.documentation_root / package.name / package.spec.version

    def already_installed(self, package: "LocalPackage") -> bool:
        return (self.documentation_dir(package) / "index.md").is_file()

    def render(self, package: "LocalPackage") -> str:
        spec = package.spec
        lines = [f"# {spec.name} {spec.display_version}", ""]
        if spec.summary:
            lines += [spec.summary, ""]
        if spec.authors:
            lines.append("Authors: " + ", ".join(spec.authors))
        if spec.homepage:
            lines.append(f"Homepage: <{spec.homepage}>")
        if spec.license:
            lines.append(f"License: {spec.license}")
        headers = sorted(path.name for path in package.public_header_files())
        if headers:
            lines += ["", "## Public headers", ""]
            lines += [f"- `{name}`" for name in headers]
        return "\n".join(lines).rstrip() + "\n"

    def generate(self, package: "LocalPackage", *, install: bool = False) -> Path:
        directory = self.documentation_dir(package)
        directory.mkdir(parents=True, exist_ok=True)
        page = directory / "index.md"
        page.write_text(self.render(package), encoding="utf-8")
        logger.debug("Generated documentation for %s", package.name)
        if install and self.install_root is not None:
            installed = self.install_root / package.name / package.spec.version
            installed.mkdir(parents=True, exist_ok=True)
            shutil.copy2(page, installed / page.name)
        return page


__all__ = ["DocsGenerator", "MarkdownDocsGenerator"]
