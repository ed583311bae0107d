"""Console output shared by the installer and the CLI."""
from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from typing import IO, Iterator

from rich.console import Console
from rich.markup import escape


class LockingConsole:
    """Thread-safe wrapper around a rich console."""

    def __init__(self, base: Console | None = None):
        self._lock = threading.RLock()
        self._console = base or Console(soft_wrap=False, highlight=False)

    @property
    def console(self) -> Console:
        return self._console

    def print(self, *args, **kwargs):
        with self._lock:
            self._console.print(*args, **kwargs)

    def log(self, *args, **kwargs):
        with self._lock:
            self._console.log(*args, **kwargs)

    def flush(self) -> None:
        with self._lock:
            self._console.file.flush()


def plain_output() -> bool:
    """``True`` when colours and styling should be suppressed."""

    return bool(os.environ.get("PODYARD_NO_ANIM") or os.environ.get("CI"))


def make_console(file: IO[str] | None = None) -> LockingConsole:
    plain = plain_output()
    return LockingConsole(
        Console(
            file=file,
            soft_wrap=False,
            highlight=False,
            no_color=plain,
            force_terminal=False if plain else None,
        )
    )


class InstallUI:
    """Nested section output: ``-> Installing X`` with indented sub-messages.

    Sub-messages only show in verbose mode; titles always show unless *quiet*.
    """

    def __init__(
        self,
        console: LockingConsole | None = None,
        *,
        verbose: bool = False,
        quiet: bool = False,
    ) -> None:
        self.console = console or make_console()
        self.verbose = verbose
        self.quiet = quiet
        self._indent = threading.local()

    def _level(self) -> int:
        return getattr(self._indent, "level", 0)

    def _emit(self, text: str, *, style: str | None = None) -> None:
        if self.quiet:
            return
        pad = "  " * self._level()
        self.console.print(f"{pad}{escape(text)}", style=style)

    @contextmanager
    def section(self, title: str, prefix: str = "-> ", *, style: str | None = "green") -> Iterator[None]:
        self._emit(f"{prefix}{title}", style=style)
        self._indent.level = self._level() + 1
        try:
            yield
        finally:
            self._indent.level = self._level() - 1

    def title(self, title: str) -> None:
        self._emit(title, style="bold")

    def message(self, text: str) -> None:
        if self.verbose:
            self._emit(text, style="dim")

    def info(self, text: str) -> None:
        self._emit(text)

    def warn(self, text: str) -> None:
        self._emit(f"[!] {text}", style="yellow")


__all__ = ["InstallUI", "LockingConsole", "make_console", "plain_output"]
