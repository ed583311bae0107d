"""Telemetry client turning installer progress into typed records."""
from __future__ import annotations

import platform
import time
import uuid
from typing import Callable

from .events import PackageTelemetry, PhaseTelemetry, RunTelemetry, TelemetryEvent
from .storage import TelemetryStorageAdapter


def failure_code(phase: str, error: BaseException | None) -> str | None:
    """Return ``"<phase>:<ErrorType>"``, the key failures are grouped by."""

    if error is None:
        return None
    return f"{phase}:{type(error).__name__}"


class NullTelemetryClient:
    """Telemetry client that drops all records."""

    run_id: str | None = None

    def start_run(self, *, version: str, jobs: int, update_mode: bool, packages: int = 0) -> None:
        return None

    def phase_finished(
        self,
        phase: str,
        status: str,
        duration: float,
        *,
        error: BaseException | None = None,
    ) -> None:
        return None

    def package_finished(
        self,
        package: str,
        status: str,
        *,
        cache_hit: bool = False,
        revision: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        return None

    def flush(self) -> None:
        return None


class TelemetryClient:
    """Stamps records with the current run id and hands them to *storage*.

    Phase and package records before :meth:`start_run` are dropped.
    """

    def __init__(
        self,
        storage: TelemetryStorageAdapter,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.storage = storage
        self.clock = clock or time.time
        self.run_id: str | None = None

    def _persist(self, event: TelemetryEvent) -> None:
        self.storage.persist(event)

    def start_run(self, *, version: str, jobs: int, update_mode: bool, packages: int = 0) -> None:
        self.run_id = uuid.uuid4().hex
        self._persist(
            RunTelemetry(
                self.run_id,
                timestamp=self.clock(),
                version=version,
                platform=platform.platform(),
                python=platform.python_version(),
                jobs=jobs,
                update_mode=update_mode,
                packages=packages,
            )
        )

    def phase_finished(
        self,
        phase: str,
        status: str,
        duration: float,
        *,
        error: BaseException | None = None,
    ) -> None:
        if self.run_id is None:
            return
        self._persist(
            PhaseTelemetry(
                self.run_id,
                timestamp=self.clock(),
                phase=phase,
                status=status,
                duration=round(duration, 4),
                failure_code=failure_code(phase, error),
            )
        )

    def package_finished(
        self,
        package: str,
        status: str,
        *,
        cache_hit: bool = False,
        revision: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        if self.run_id is None:
            return
        phase = getattr(error, "phase", None) or "install-packages"
        self._persist(
            PackageTelemetry(
                self.run_id,
                timestamp=self.clock(),
                package=package,
                status=status,
                cache_hit=cache_hit,
                revision=revision,
                failure_code=failure_code(phase, error),
            )
        )

    def flush(self) -> None:
        self.storage.flush()


__all__ = ["NullTelemetryClient", "TelemetryClient", "failure_code"]
