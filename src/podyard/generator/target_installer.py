"""Per-target build descriptors and the files generated for them."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from podyard.resolution import PackageSpec, TargetDefinition

from .dummy_source import DummySource
from .project import BuildProject

if TYPE_CHECKING:  # pragma: no cover - typing only
    from podyard.packages import LocalPackage
    from podyard.sandbox import Sandbox

logger = logging.getLogger("podyard.generator")

_PREFIX_IMPORTS = {
    "ios": "UIKit/UIKit.h",
    "osx": "Cocoa/Cocoa.h",
}


@dataclass
class Library:
    """What one target consumes: its definition, specs and package objects."""

    target_definition: TargetDefinition
    specs: list[PackageSpec] = field(default_factory=list)
    packages: list["LocalPackage"] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.target_definition.label

    @property
    def platform(self) -> str:
        return self.target_definition.platform

    def support_files_dir(self, sandbox: "Sandbox") -> Path:
        return sandbox.support_files_dir(self.label)

    def xcconfig_path(self, sandbox: "Sandbox") -> Path:
        return self.support_files_dir(sandbox) / f"{self.label}.xcconfig"

    def prefix_header_path(self, sandbox: "Sandbox") -> Path:
        return self.support_files_dir(sandbox) / f"{self.label}-prefix.pch"

    def acknowledgements_path(self, sandbox: "Sandbox") -> Path:
        return self.support_files_dir(sandbox) / f"{self.label}-acknowledgements.markdown"

    def dummy_source_path(self, sandbox: "Sandbox") -> Path:
        return self.support_files_dir(sandbox) / f"{DummySource(self.label).class_name}.m"


class TargetInstaller:
    """Adds a native target to the project and writes its support files."""

    def __init__(self, sandbox: "Sandbox", project: BuildProject, library: Library) -> None:
        self.sandbox = sandbox
        self.project = project
        self.library = library
        self.installed = False

    @property
    def target_definition(self) -> TargetDefinition:
        return self.library.target_definition

    @property
    def label(self) -> str:
        return self.library.label

    @property
    def native_target(self) -> dict:
        return self.project.target_named(self.label)

    def install(self) -> None:
        support_dir = self.library.support_files_dir(self.sandbox)
        support_dir.mkdir(parents=True, exist_ok=True)
        target = self.project.add_native_target(self.label, platform=self.library.platform)
        for package in self.library.packages:
            for path in package.source_files():
                reference = self._relative(path)
                if reference not in target["sources"]:
                    target["sources"].append(reference)
        target["frameworks"] = self._frameworks()
        target["libraries"] = self._libraries()

        xcconfig = self.library.xcconfig_path(self.sandbox)
        xcconfig.write_text(self.render_xcconfig(), encoding="utf-8")
        prefix = self.library.prefix_header_path(self.sandbox)
        prefix.write_text(self.render_prefix_header(), encoding="utf-8")
        target["build_settings"] = self._relative(xcconfig)
        target["prefix_header"] = self._relative(prefix)

        group = self.project.add_support_group(self.label)
        self.project.add_file_reference(group, self._relative(xcconfig))
        self.project.add_file_reference(group, self._relative(prefix))
        self.installed = True
        logger.debug("Installed target %s with %d package(s)", self.label, len(self.library.packages))

    # ------------------------------------------------------------------
    def _frameworks(self) -> list[str]:
        names: dict[str, None] = {}
        for spec in self.library.specs:
            for framework in spec.frameworks:
                names.setdefault(framework, None)
        return list(names)

    def _libraries(self) -> list[str]:
        names: dict[str, None] = {}
        for spec in self.library.specs:
            for library in spec.libraries:
                names.setdefault(library, None)
        return list(names)

    def render_xcconfig(self) -> str:
        header_paths = ['"${PODS_ROOT}/Headers/Public"']
        header_paths += [
            f'"${{PODS_ROOT}}/Headers/Public/{package.name}"' for package in self.library.packages
        ]
        ldflags = [f"-framework {name}" for name in self._frameworks()]
        ldflags += [f"-l{name}" for name in self._libraries()]
        lines = [
            "PODS_ROOT = ${SRCROOT}/" + self.sandbox.root.name,
            "HEADER_SEARCH_PATHS = " + " ".join(header_paths),
            "OTHER_LDFLAGS = " + " ".join(["-ObjC", *ldflags]),
            "GCC_PREFIX_HEADER = " + self.library.prefix_header_path(self.sandbox).name,
        ]
        return "\n".join(lines) + "\n"

    def render_prefix_header(self) -> str:
        framework = _PREFIX_IMPORTS.get(self.library.platform, "Foundation/Foundation.h")
        return f"#ifdef __OBJC__\n#import <{framework}>\n#endif\n"

    def _relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.sandbox.root.resolve()).as_posix()
        except ValueError:
            return path.resolve().as_posix()

    def __repr__(self) -> str:
        return f"<TargetInstaller {self.label}>"


__all__ = ["Library", "TargetInstaller"]
