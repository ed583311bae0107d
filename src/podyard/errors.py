"""Error hierarchy raised by the installation pipeline."""
from __future__ import annotations

from typing import Sequence

__all__ = [
    "AggregateFetchError",
    "CleanupError",
    "FetchError",
    "HookError",
    "InstallError",
    "IntegrationError",
    "PersistenceError",
    "ResolutionError",
]


class InstallError(RuntimeError):
    """Base class for pipeline failures.

    Every error carries enough identity (phase, package, target) to pinpoint
    the failing step; ``str()`` renders them as a prefix.
    """

    def __init__(
        self,
        message: str,
        *,
        phase: str | None = None,
        package: str | None = None,
        target: str | None = None,
        original: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.package = package
        self.target = target
        self.original = original

    def identity(self) -> dict[str, str]:
        data: dict[str, str] = {}
        if self.phase:
            data["phase"] = self.phase
        if self.target:
            data["target"] = self.target
        if self.package:
            data["package"] = self.package
        return data

    def __str__(self) -> str:
        identity = self.identity()
        if not identity:
            return self.message
        prefix = " ".join(f"{key}={value}" for key, value in identity.items())
        return f"[{prefix}] {self.message}"


class ResolutionError(InstallError):
    """The resolution result cannot be turned into a registry."""


class CleanupError(InstallError):
    """A removed package could not be deleted. Logged, never raised by the installer."""


class FetchError(InstallError):
    """Retrieving a package source failed."""


class AggregateFetchError(FetchError):
    """Several packages failed to fetch while ``continue_on_failure`` was set."""

    def __init__(self, failures: Sequence[FetchError], *, phase: str | None = None) -> None:
        names = ", ".join(sorted(err.package or "?" for err in failures))
        super().__init__(f"{len(failures)} package(s) failed to install: {names}", phase=phase)
        self.failures: tuple[FetchError, ...] = tuple(failures)


class HookError(InstallError):
    """A pre/post install hook or plugin callback raised."""


class PersistenceError(InstallError):
    """The installation record could not be written to one of its locations."""


class IntegrationError(InstallError):
    """Wiring the generated artifacts into the host project failed."""
