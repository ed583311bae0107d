"""Storage adapters for telemetry events."""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Iterable, List, Protocol, Sequence

import requests

from .events import TelemetryEvent

logger = logging.getLogger("podyard.telemetry")


class TelemetryStorageAdapter(Protocol):
    """Protocol for persisting telemetry events."""

    def persist(self, event: TelemetryEvent) -> None:
        ...

    def flush(self) -> None:
        ...

    def bootstrap(self) -> Iterable[TelemetryEvent]:
        """Return previously persisted events."""
        return []


class JsonlTelemetryStorage:
    """Append-only JSON-lines storage suitable for opt-in telemetry."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._buffer: List[TelemetryEvent] = []
        self._lock = threading.Lock()

    def persist(self, event: TelemetryEvent) -> None:
        with self._lock:
            self._buffer.append(event)

    def flush(self) -> None:
        with self._lock:
            if not self._buffer:
                return
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                for event in self._buffer:
                    handle.write(json.dumps(event.to_dict(), default=str) + "\n")
            self._buffer.clear()

    def bootstrap(self) -> Iterable[TelemetryEvent]:
        if not self.path.exists():
            return []
        events: List[TelemetryEvent] = []
        with self.path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(TelemetryEvent.from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                    logger.debug("Skipping malformed telemetry line in %s", self.path)
        return events


class InMemoryTelemetryStorage:
    """Non-persistent storage used for unit tests."""

    def __init__(self) -> None:
        self.events: List[TelemetryEvent] = []

    def persist(self, event: TelemetryEvent) -> None:
        self.events.append(event)

    def flush(self) -> None:
        return None

    def bootstrap(self) -> Iterable[TelemetryEvent]:
        return list(self.events)


class HttpTelemetryStorage:
    """POST buffered events as a JSON array to *endpoint* on flush.

    Delivery failures are logged at debug level and the batch is dropped.
    """

    def __init__(self, endpoint: str, *, session: Any | None = None, timeout: float = 2.0) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self._session = session or requests.Session()
        self._buffer: List[TelemetryEvent] = []
        self._lock = threading.Lock()

    def persist(self, event: TelemetryEvent) -> None:
        with self._lock:
            self._buffer.append(event)

    def flush(self) -> None:
        with self._lock:
            events = list(self._buffer)
            self._buffer.clear()
        if not events:
            return
        try:
            response = self._session.post(
                self.endpoint,
                json=[event.to_dict() for event in events],
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException:
            logger.debug("Telemetry upload to %s failed", self.endpoint, exc_info=True)

    def bootstrap(self) -> Iterable[TelemetryEvent]:
        return []


class CompositeTelemetryStorage:
    """Multiplex events across multiple storage adapters."""

    def __init__(self, adapters: Sequence[TelemetryStorageAdapter]) -> None:
        if not adapters:
            raise ValueError("CompositeTelemetryStorage requires at least one adapter")
        self._adapters: tuple[TelemetryStorageAdapter, ...] = tuple(adapters)

    def persist(self, event: TelemetryEvent) -> None:
        for adapter in self._adapters:
            adapter.persist(event)

    def flush(self) -> None:
        for adapter in self._adapters:
            adapter.flush()

    def bootstrap(self) -> Iterable[TelemetryEvent]:
        return self._adapters[0].bootstrap()


__all__ = [
    "CompositeTelemetryStorage",
    "HttpTelemetryStorage",
    "InMemoryTelemetryStorage",
    "JsonlTelemetryStorage",
    "TelemetryStorageAdapter",
]
