"""Event primitives emitted by the installer to its subscribers."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .phases import InstallPhase


class InstallEventType(str, Enum):
    PHASE = "phase"
    PACKAGE = "package"
    LOG = "log"


@dataclass(slots=True)
class InstallEvent:
    """Base event payload."""

    type: InstallEventType
    payload: Mapping[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "payload": dict(self.payload)}


class PhaseEvent(InstallEvent):
    """Phase lifecycle transition: started, completed, skipped or failed."""

    __slots__ = ("phase", "status", "message")

    def __init__(
        self,
        phase: "InstallPhase",
        *,
        status: str,
        message: str | None = None,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(InstallEventType.PHASE, payload or {})
        self.phase = phase
        self.status = status
        self.message = message

    def as_dict(self) -> dict[str, Any]:
        data = super().as_dict()
        data.update({"phase": self.phase.value, "status": self.status, "message": self.message})
        return data

    def __repr__(self) -> str:
        return f"PhaseEvent({self.phase.value}, status={self.status!r})"


class PackageEvent(InstallEvent):
    """Per-package outcome: installed, using, removed or failed."""

    __slots__ = ("package", "status", "error")

    def __init__(
        self,
        package: str,
        *,
        status: str,
        error: str | None = None,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(InstallEventType.PACKAGE, payload or {})
        self.package = package
        self.status = status
        self.error = error

    def as_dict(self) -> dict[str, Any]:
        data = super().as_dict()
        data.update({"package": self.package, "status": self.status, "error": self.error})
        return data

    def __repr__(self) -> str:
        return f"PackageEvent({self.package}, status={self.status!r})"


class LogEvent(InstallEvent):
    __slots__ = ("level", "message")

    def __init__(self, level: str, message: str, *, payload: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(InstallEventType.LOG, payload or {})
        self.level = level
        self.message = message

    def as_dict(self) -> dict[str, Any]:
        data = super().as_dict()
        data.update({"level": self.level, "message": self.message})
        return data


__all__ = ["InstallEvent", "InstallEventType", "LogEvent", "PackageEvent", "PhaseEvent"]
