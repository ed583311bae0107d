"""The ordered phases of an install run and their results."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class InstallPhase(Enum):
    """Phases executed by :class:`podyard.install.Installer`, in order."""

    ANALYZE = "analyze"
    REGISTRY = "registry"
    DECISION = "decision"
    CLEAN_GLOBAL = "clean-global"
    CLEAN_REMOVED = "clean-removed"
    INSTALL_PACKAGES = "install-packages"
    GENERATE_TARGETS = "generate-targets"
    WRITE_RECORDS = "write-records"
    INTEGRATE = "integrate"


PHASE_ORDER: tuple[InstallPhase, ...] = (
    InstallPhase.ANALYZE,
    InstallPhase.REGISTRY,
    InstallPhase.DECISION,
    InstallPhase.CLEAN_GLOBAL,
    InstallPhase.CLEAN_REMOVED,
    InstallPhase.INSTALL_PACKAGES,
    InstallPhase.GENERATE_TARGETS,
    InstallPhase.WRITE_RECORDS,
    InstallPhase.INTEGRATE,
)

# Phases a recipe may skip with ``phases: {<phase>: {skip: true}}``.
OPTIONAL_PHASES: frozenset[InstallPhase] = frozenset({InstallPhase.INTEGRATE})


class PhaseStatus(Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class PhaseResult:
    """Structured result of one phase."""

    phase: InstallPhase
    status: PhaseStatus
    payload: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None
    error_repr: str | None = None
    started_at: float = field(default_factory=time.time)
    finished_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if self.error is not None and self.error_repr is None:
            self.error_repr = str(self.error)

    @property
    def duration(self) -> float:
        return max(0.0, self.finished_at - self.started_at)

    def as_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "status": self.status.value,
            "payload": self.payload,
            "error": self.error_repr,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PhaseResult":
        started_at = float(data.get("started_at", time.time()))
        error_repr = data.get("error")
        return cls(
            phase=InstallPhase(data.get("phase", InstallPhase.ANALYZE.value)),
            status=PhaseStatus(data.get("status", PhaseStatus.SUCCESS.value)),
            payload=dict(data.get("payload", {})),
            error_repr=str(error_repr) if error_repr else None,
            started_at=started_at,
            finished_at=float(data.get("finished_at", started_at)),
        )


__all__ = ["InstallPhase", "OPTIONAL_PHASES", "PHASE_ORDER", "PhaseResult", "PhaseStatus"]
