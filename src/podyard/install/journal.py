"""JSONL journal of install runs, one file per run."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Iterable, Mapping, Sequence

from .events import InstallEvent, PackageEvent, PhaseEvent
from .phases import PhaseResult, PhaseStatus

logger = logging.getLogger("podyard.install")


def journal_directory(sandbox_root: Path) -> Path:
    return Path(sandbox_root) / ".podyard" / "runs"


@dataclass(slots=True)
class InstallRunJournal:
    """Persisted record of one install run."""

    path: Path
    metadata: Mapping[str, Any]
    results: Sequence[PhaseResult]
    packages: Sequence[Mapping[str, Any]] = ()
    outcome: Mapping[str, Any] | None = None

    @property
    def succeeded(self) -> bool:
        if self.outcome is not None:
            return self.outcome.get("status") == "success"
        return bool(self.results) and all(res.status is not PhaseStatus.FAILED for res in self.results)

    def failed_phase(self) -> PhaseResult | None:
        return next((res for res in self.results if res.status is PhaseStatus.FAILED), None)

    def iter_events(self) -> Iterable[InstallEvent]:
        """Replay the journal as installer events."""

        for result in self.results:
            status = {
                PhaseStatus.SUCCESS: "completed",
                PhaseStatus.SKIPPED: "skipped",
                PhaseStatus.FAILED: "failed",
            }[result.status]
            yield PhaseEvent(result.phase, status=status, message=result.error_repr, payload={"source": "journal"})
        for entry in self.packages:
            yield PackageEvent(
                str(entry.get("package")),
                status=str(entry.get("status")),
                error=entry.get("error"),
                payload={"source": "journal"},
            )


def _load_journal(path: Path) -> InstallRunJournal:
    metadata: dict[str, Any] = {}
    results: list[PhaseResult] = []
    packages: list[dict[str, Any]] = []
    outcome: dict[str, Any] | None = None
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            text = line.strip()
            if not text:
                continue
            try:
                record = json.loads(text)
            except json.JSONDecodeError:
                logger.debug("Skipping malformed journal line in %s", path)
                continue
            record_type = record.pop("type", None)
            if record_type == "run" and not metadata:
                metadata = record
            elif record_type == "phase":
                results.append(PhaseResult.from_dict(record))
            elif record_type == "package":
                packages.append(record)
            elif record_type == "outcome":
                outcome = record
    return InstallRunJournal(
        path=path,
        metadata=metadata,
        results=tuple(results),
        packages=tuple(packages),
        outcome=outcome,
    )


def load_last_run(sandbox_root: Path) -> InstallRunJournal | None:
    """Return the most recent journaled install run below *sandbox_root*, if any."""

    directory = journal_directory(sandbox_root)
    if not directory.is_dir():
        return None
    candidates = sorted(directory.glob("*.jsonl"), key=lambda entry: entry.name, reverse=True)
    for candidate in candidates:
        try:
            return _load_journal(candidate)
        except OSError:
            logger.debug("Unreadable journal %s", candidate, exc_info=True)
            continue
    return None


class JournalWriter:
    """Append run, phase, package and outcome entries to a new journal file.

    Entries are buffered in memory until :meth:`materialize` creates the file,
    so a run that aborts before touching the sandbox leaves no journal behind.
    """

    def __init__(self, sandbox_root: Path) -> None:
        self.directory = journal_directory(sandbox_root)
        self.path: Path | None = None
        self._handle: IO[str] | None = None
        self._pending: list[Mapping[str, Any]] = []
        self._timestamp: str | None = None

    def start(self, metadata: Mapping[str, Any]) -> None:
        self._timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        entry = {"type": "run", "timestamp": self._timestamp}
        entry.update(metadata)
        self._pending = [entry]

    def materialize(self) -> Path:
        if self.path is not None:
            return self.path
        self.directory.mkdir(parents=True, exist_ok=True)
        timestamp = self._timestamp or datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        self.path = self.directory / f"{timestamp}.jsonl"
        self._handle = self.path.open("w", encoding="utf-8")
        pending, self._pending = self._pending, []
        for entry in pending:
            self._write(entry)
        return self.path

    def record_phase(self, result: PhaseResult) -> None:
        entry: dict[str, Any] = {"type": "phase"}
        entry.update(result.as_dict())
        self._write(entry)

    def record_package(self, name: str, status: str, *, error: str | None = None, **extra: Any) -> None:
        entry: dict[str, Any] = {"type": "package", "package": name, "status": status, "error": error}
        entry.update(extra)
        self._write(entry)

    def record_outcome(self, status: str, **extra: Any) -> None:
        entry: dict[str, Any] = {"type": "outcome", "status": status}
        entry.update(extra)
        self._write(entry)

    def close(self) -> None:
        self._pending = []
        if self._handle is not None:
            try:
                self._handle.flush()
            finally:
                self._handle.close()
        self._handle = None

    def _write(self, entry: Mapping[str, Any]) -> None:
        if self._handle is None:
            self._pending.append(entry)
            return
        json.dump(entry, self._handle, default=str)
        self._handle.write("\n")
        self._handle.flush()


__all__ = ["InstallRunJournal", "JournalWriter", "journal_directory", "load_last_run"]
