"""Run summary panel model and command diagnostics for install runs."""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import List, Sequence

from rich import box
from rich.console import Group, RenderableType
from rich.markup import escape as rich_escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text


@dataclass
class CommandRecord:
    """Diagnostic information about a subprocess invocation."""

    command: Sequence[str]
    cwd: str | None = None
    duration: float = 0.0
    exit_code: int | None = None
    stderr: str | None = None
    hint: str | None = None
    started_at: float = field(default_factory=time.perf_counter)

    def finalize(
        self,
        *,
        exit_code: int | None,
        stderr: str | None,
        duration: float,
        hint: str | None,
    ) -> None:
        self.exit_code = exit_code
        self.stderr = (stderr or "").strip() or None
        self.duration = duration
        self.hint = hint

    @property
    def command_str(self) -> str:
        return " ".join(map(str, self.command))

    def status_badge(self) -> str:
        if self.exit_code in (0, None):
            return "[green]OK[/]"
        return f"[red]exit {self.exit_code}[/]"

    def duration_text(self) -> str:
        return f"{self.duration:.2f}s"

    def as_dict(self) -> dict[str, object]:
        return {
            "command": self.command_str,
            "exit_code": self.exit_code,
            "duration": self.duration,
            "hint": self.hint,
        }


@dataclass
class InstallSummary:
    """Aggregate state rendered at the end of an install run.

    Fetch workers append from several threads, so every mutator takes the
    internal lock.
    """

    installed: List[str] = field(default_factory=list)
    reused: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    commands: List[CommandRecord] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add_installed(self, name: str) -> None:
        with self._lock:
            self.installed.append(name)

    def add_reused(self, name: str) -> None:
        with self._lock:
            self.reused.append(name)

    def add_removed(self, name: str) -> None:
        with self._lock:
            self.removed.append(name)

    def add_warning(self, message: str) -> None:
        with self._lock:
            self.warnings.append(message)

    def add_error(self, message: str) -> None:
        with self._lock:
            self.errors.append(message)

    def begin_command(self, command: Sequence[str], *, cwd: str | None = None) -> CommandRecord:
        record = CommandRecord(tuple(command), cwd=cwd)
        with self._lock:
            self.commands.append(record)
        return record

    def as_dict(self) -> dict[str, object]:
        return {
            "installed": list(self.installed),
            "reused": list(self.reused),
            "removed": list(self.removed),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "commands": [record.as_dict() for record in self.commands],
        }

    def as_panel(self) -> RenderableType:
        stats = Table.grid(padding=(0, 2))
        stats.add_column(justify="left")
        stats.add_column(justify="right")
        stats.add_row("Installed", Text(str(len(self.installed)), style="bold green"))
        stats.add_row("Using", Text(str(len(self.reused)), style="bold cyan"))
        stats.add_row("Removed", Text(str(len(self.removed)), style="bold"))
        stats.add_row("Warnings", Text(str(len(self.warnings)), style="bold yellow"))
        stats.add_row("Errors", Text(str(len(self.errors)), style="bold red"))

        sections: List[RenderableType] = [stats]
        if self.commands:
            command_table = Table(
                show_lines=False,
                expand=True,
                header_style="bold magenta",
                box=box.SIMPLE_HEAVY,
            )
            command_table.add_column("Command", overflow="fold", ratio=2)
            command_table.add_column("Status", no_wrap=True)
            command_table.add_column("Duration", no_wrap=True)
            command_table.add_column("Notes", ratio=1, overflow="fold")
            for record in self.commands:
                notes: list[str] = []
                if record.hint:
                    notes.append(f"[cyan]{rich_escape(record.hint)}[/]")
                if record.stderr:
                    notes.append(f"[dim]{rich_escape(record.stderr)}[/]")
                command_table.add_row(
                    rich_escape(record.command_str),
                    record.status_badge(),
                    record.duration_text(),
                    "\n".join(notes),
                )
            sections.append(command_table)

        details = Table.grid(padding=(0, 2))
        if self.installed:
            details.add_row(Text("Installed", style="bold green"), Text(", ".join(self.installed)))
        if self.removed:
            details.add_row(Text("Removed", style="bold"), Text(", ".join(self.removed)))
        if self.warnings:
            details.add_row(Text("Warnings", style="bold yellow"), Text("\n".join(self.warnings), style="yellow"))
        if self.errors:
            details.add_row(Text("Errors", style="bold red"), Text("\n".join(self.errors), style="red"))
        if details.row_count:
            sections.append(details)

        body: RenderableType = sections[0] if len(sections) == 1 else Group(*sections)
        border = "red" if self.errors else "magenta"
        return Panel(body, title="Install Summary", border_style=border, padding=(1, 2))

    def last_command(self) -> CommandRecord | None:
        return self.commands[-1] if self.commands else None


__all__ = ["CommandRecord", "InstallSummary"]
