"""Installation records: the lockfile and its sandbox manifest copy."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from podyard import __version__
from podyard.errors import PersistenceError
from podyard.resolution import Resolution

logger = logging.getLogger("podyard.install")

_PACKAGE_ENTRY = re.compile(r"^(?P<name>\S+) \((?:HEAD based on )?(?P<version>[^)]+)\)$")


def _package_entry(name: str, version: str, head: bool) -> str:
    if head:
        return f"{name} (HEAD based on {version})"
    return f"{name} ({version})"


@dataclass
class InstallationRecord:
    """Snapshot of what one run installed.

    ``versions``, ``checksums``, ``external_sources`` and ``checkout_options``
    are keyed by package name.
    """

    versions: dict[str, str] = field(default_factory=dict)
    heads: frozenset[str] = frozenset()
    dependencies: list[str] = field(default_factory=list)
    checksums: dict[str, str] = field(default_factory=dict)
    external_sources: dict[str, dict[str, Any]] = field(default_factory=dict)
    checkout_options: dict[str, dict[str, Any]] = field(default_factory=dict)
    tool_version: str = __version__

    @classmethod
    def generate(
        cls,
        resolution: Resolution,
        *,
        checkout_sources: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> "InstallationRecord":
        specs = resolution.specifications
        names = {spec.name for spec in specs}
        checkout = {
            name: dict(source)
            for name, source in (checkout_sources or {}).items()
            if name in names
        }
        return cls(
            versions={spec.name: spec.version for spec in specs},
            heads=frozenset(spec.name for spec in specs if spec.head),
            dependencies=resolution.project.dependencies(),
            checksums={spec.name: spec.checksum() for spec in specs},
            external_sources=resolution.external_sources(),
            checkout_options=checkout,
        )

    # ------------------------------------------------------------------
    @property
    def package_names(self) -> frozenset[str]:
        return frozenset(self.versions)

    def version_of(self, name: str) -> str | None:
        return self.versions.get(name)

    def checksum_of(self, name: str) -> str | None:
        return self.checksums.get(name)

    def external_source_of(self, name: str) -> dict[str, Any] | None:
        return self.external_sources.get(name)

    # ------------------------------------------------------------------
    def as_dict(self) -> dict[str, Any]:
        ordered = sorted(self.versions, key=str.lower)
        payload: dict[str, Any] = {
            "PODS": [_package_entry(name, self.versions[name], name in self.heads) for name in ordered],
            "DEPENDENCIES": list(self.dependencies),
            "SPEC CHECKSUMS": dict(self.checksums),
            "PODYARD": self.tool_version,
        }
        if self.external_sources:
            payload["EXTERNAL SOURCES"] = {k: dict(v) for k, v in self.external_sources.items()}
        if self.checkout_options:
            payload["CHECKOUT OPTIONS"] = {k: dict(v) for k, v in self.checkout_options.items()}
        return payload

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.as_dict(), default_flow_style=False, sort_keys=True, allow_unicode=True)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "InstallationRecord":
        versions: dict[str, str] = {}
        heads: set[str] = set()
        for entry in data.get("PODS") or []:
            if isinstance(entry, Mapping):
                # ``name (version): [dependencies]``
                entry = next(iter(entry))
            match = _PACKAGE_ENTRY.match(str(entry))
            if not match:
                logger.warning("Ignoring malformed record entry %r", entry)
                continue
            versions[match["name"]] = match["version"]
            if "HEAD based on" in str(entry):
                heads.add(match["name"])
        return cls(
            versions=versions,
            heads=frozenset(heads),
            dependencies=[str(item) for item in data.get("DEPENDENCIES") or []],
            checksums={str(k): str(v) for k, v in (data.get("SPEC CHECKSUMS") or {}).items()},
            external_sources={str(k): dict(v) for k, v in (data.get("EXTERNAL SOURCES") or {}).items()},
            checkout_options={str(k): dict(v) for k, v in (data.get("CHECKOUT OPTIONS") or {}).items()},
            tool_version=str(data.get("PODYARD") or __version__),
        )

    @classmethod
    def from_yaml(cls, text: str) -> "InstallationRecord":
        data = yaml.safe_load(text) or {}
        if not isinstance(data, Mapping):
            raise ValueError("Installation record must contain a mapping")
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: Path) -> "InstallationRecord":
        return cls.from_yaml(Path(path).read_text(encoding="utf-8"))


def write_records(record: InstallationRecord, primary_path: Path, manifest_path: Path) -> str:
    """Write *record* to both locations and return the serialized text.

    The record is serialized once so both files hold identical bytes.
    """

    text = record.to_yaml()
    payload = text.encode("utf-8")
    for path in (Path(primary_path), Path(manifest_path)):
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(payload)
        except OSError as exc:
            raise PersistenceError(f"Cannot write installation record to {path}: {exc}", original=exc) from exc
        logger.debug("Wrote installation record to %s", path)
    return text


__all__ = ["InstallationRecord", "write_records"]
