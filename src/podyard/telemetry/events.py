"""Telemetry records emitted for install runs.

Every record belongs to one run (``run_id``). A run produces one
:class:`RunTelemetry`, one :class:`PhaseTelemetry` per phase that was
attempted or skipped and one :class:`PackageTelemetry` per package outcome.
"""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping


class TelemetryEventType(str, Enum):
    RUN = "run"
    PHASE = "phase"
    PACKAGE = "package"


@dataclass(slots=True)
class TelemetryEvent:
    """Fields shared by every record; subclasses add the typed payload."""

    type: ClassVar[TelemetryEventType]

    run_id: str
    timestamp: float = field(default_factory=time.time, kw_only=True)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TelemetryEvent":
        event_cls = _EVENT_TYPES[TelemetryEventType(data["type"])]
        names = {item.name for item in fields(event_cls)}
        return event_cls(**{key: value for key, value in data.items() if key in names})


@dataclass(slots=True)
class RunTelemetry(TelemetryEvent):
    type: ClassVar[TelemetryEventType] = TelemetryEventType.RUN

    version: str = ""
    platform: str = ""
    python: str = ""
    jobs: int = 1
    update_mode: bool = False
    packages: int = 0


@dataclass(slots=True)
class PhaseTelemetry(TelemetryEvent):
    """``failure_code`` is ``"<phase>:<ErrorType>"`` for failed phases."""

    type: ClassVar[TelemetryEventType] = TelemetryEventType.PHASE

    phase: str = ""
    status: str = ""
    duration: float = 0.0
    failure_code: str | None = None


@dataclass(slots=True)
class PackageTelemetry(TelemetryEvent):
    type: ClassVar[TelemetryEventType] = TelemetryEventType.PACKAGE

    package: str = ""
    status: str = ""
    cache_hit: bool = False
    revision: str | None = None
    failure_code: str | None = None


_EVENT_TYPES: Dict[TelemetryEventType, type[TelemetryEvent]] = {
    TelemetryEventType.RUN: RunTelemetry,
    TelemetryEventType.PHASE: PhaseTelemetry,
    TelemetryEventType.PACKAGE: PackageTelemetry,
}


__all__ = [
    "PackageTelemetry",
    "PhaseTelemetry",
    "RunTelemetry",
    "TelemetryEvent",
    "TelemetryEventType",
]
