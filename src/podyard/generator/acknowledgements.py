"""Markdown acknowledgements listing the licenses of a target's packages."""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .target_installer import Library

HEADER = "# Acknowledgements\nThis application makes use of the following third party libraries:\n"
FOOTER = "Generated by podyard\n"


class Acknowledgements:
    def __init__(self, library: "Library") -> None:
        self.library = library

    def render(self) -> str:
        sections = [HEADER]
        for package in sorted(self.library.packages, key=lambda item: item.name.lower()):
            text = package.license_text() or package.spec.license or "No license provided."
            sections.append(f"## {package.name}\n\n{text}\n")
        sections.append(FOOTER)
        return "\n".join(sections)

    def save_as(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render(), encoding="utf-8")
        return path


__all__ = ["Acknowledgements"]
