"""The build-file container shared by every target of a run."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger("podyard.generator")

PODS_GROUP = "Pods"
LOCAL_PODS_GROUP = "Local Pods"
SUPPORT_FILES_GROUP = "Targets Support Files"


class BuildProject:
    """In-memory project document serialized once at the end of a run.

    Groups map a slash separated path (``"Pods/AFNetworking"``) to the file
    references they hold; native targets carry their source files and the path
    of their build settings file.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.groups: dict[str, list[str]] = {
            PODS_GROUP: [],
            LOCAL_PODS_GROUP: [],
            SUPPORT_FILES_GROUP: [],
        }
        self.project_files: list[str] = []
        self.targets: dict[str, dict[str, Any]] = {}
        self.saves = 0

    def add_pod_group(self, name: str, *, local: bool = False) -> str:
        group = f"{LOCAL_PODS_GROUP if local else PODS_GROUP}/{name}"
        self.groups.setdefault(group, [])
        return group

    def add_support_group(self, label: str) -> str:
        group = f"{SUPPORT_FILES_GROUP}/{label}"
        self.groups.setdefault(group, [])
        return group

    def add_file_reference(self, group: str, path: str) -> None:
        references = self.groups.setdefault(group, [])
        if path not in references:
            references.append(path)

    def add_project_file(self, path: Path) -> None:
        reference = str(path)
        if reference not in self.project_files:
            self.project_files.append(reference)

    def add_native_target(self, label: str, *, platform: str) -> dict[str, Any]:
        target = self.targets.get(label)
        if target is None:
            target = {
                "name": label,
                "platform": platform,
                "sources": [],
                "frameworks": [],
                "libraries": [],
                "build_settings": None,
                "prefix_header": None,
            }
            self.targets[label] = target
        return target

    def target_named(self, label: str) -> dict[str, Any]:
        return self.targets[label]

    def as_dict(self) -> dict[str, Any]:
        return {
            "groups": {name: list(refs) for name, refs in self.groups.items()},
            "project_files": list(self.project_files),
            "targets": {label: dict(data) for label, data in self.targets.items()},
        }

    def save_as(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.as_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
        self.saves += 1
        logger.debug("Saved build project to %s", path)
        return path

    @classmethod
    def load(cls, path: Path) -> "BuildProject":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        project = cls(Path(path).parent)
        project.groups = {name: list(refs) for name, refs in data.get("groups", {}).items()}
        project.project_files = list(data.get("project_files", []))
        project.targets = dict(data.get("targets", {}))
        return project


__all__ = ["BuildProject", "LOCAL_PODS_GROUP", "PODS_GROUP", "SUPPORT_FILES_GROUP"]
