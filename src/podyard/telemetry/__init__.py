"""Opt-in telemetry for install runs."""
from __future__ import annotations

import os
from pathlib import Path

from .client import NullTelemetryClient, TelemetryClient, failure_code
from .events import PackageTelemetry, PhaseTelemetry, RunTelemetry, TelemetryEvent, TelemetryEventType
from .storage import (
    CompositeTelemetryStorage,
    HttpTelemetryStorage,
    InMemoryTelemetryStorage,
    JsonlTelemetryStorage,
    TelemetryStorageAdapter,
)


def telemetry_from_environment(root: Path) -> TelemetryClient | NullTelemetryClient:
    """Build a client from ``PODYARD_TELEMETRY`` / ``PODYARD_TELEMETRY_URL``.

    Telemetry is off unless one of them is set. ``PODYARD_TELEMETRY=1`` writes
    ``telemetry.jsonl`` below *root* (normally the cache root).
    """

    adapters: list[TelemetryStorageAdapter] = []
    flag = os.environ.get("PODYARD_TELEMETRY", "").strip().lower()
    if flag in {"1", "true", "yes", "on"}:
        adapters.append(JsonlTelemetryStorage(Path(root) / "telemetry.jsonl"))
    url = os.environ.get("PODYARD_TELEMETRY_URL")
    if url:
        adapters.append(HttpTelemetryStorage(url))
    if not adapters:
        return NullTelemetryClient()
    storage = adapters[0] if len(adapters) == 1 else CompositeTelemetryStorage(adapters)
    return TelemetryClient(storage)


__all__ = [
    "CompositeTelemetryStorage",
    "HttpTelemetryStorage",
    "InMemoryTelemetryStorage",
    "JsonlTelemetryStorage",
    "NullTelemetryClient",
    "PackageTelemetry",
    "PhaseTelemetry",
    "RunTelemetry",
    "TelemetryClient",
    "TelemetryEvent",
    "TelemetryEventType",
    "TelemetryStorageAdapter",
    "failure_code",
    "telemetry_from_environment",
]
