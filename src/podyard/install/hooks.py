"""Plugin interfaces for the installer."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from importlib import metadata
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Protocol, runtime_checkable

from podyard.errors import HookError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .events import InstallEvent
    from .installer import Installer
    from .phases import InstallPhase, PhaseResult


ENTRYPOINT_GROUP = "podyard.plugins"

logger = logging.getLogger("podyard.install.plugins")

EventCallback = Callable[["InstallEvent"], None]


@runtime_checkable
class InstallPlugin(Protocol):
    """Protocol for installer plugins.

    Every method is optional; :class:`HookManager` only calls what a plugin
    defines.
    """

    name: str

    def register(self, registrar: "PluginRegistrar") -> None:
        """Register event subscribers with the installer."""

    def before_phase(self, phase: "InstallPhase", installer: "Installer") -> None:
        """Called immediately before a phase runs."""

    def after_phase(self, phase: "InstallPhase", result: "PhaseResult", installer: "Installer") -> None:
        """Called after a phase completes."""

    def on_error(self, phase: "InstallPhase", error: BaseException, installer: "Installer") -> None:
        """Called when a phase raises."""


@dataclass
class PluginHandle:
    identifier: str
    plugin: Any
    subscribers: list[EventCallback] = field(default_factory=list)


@dataclass
class PluginRegistrar:
    """Registration API handed to plugins."""

    installer: "Installer"
    handle: PluginHandle

    def add_subscriber(self, callback: EventCallback) -> None:
        self.installer.subscribe(callback)
        self.handle.subscribers.append(callback)


class HookManager:
    """Load plugins and dispatch phase callbacks to them.

    A plugin raising from ``before_phase`` or ``after_phase`` aborts the run
    with :class:`HookError`; ``on_error`` failures are only logged since a
    phase error is already propagating.
    """

    def __init__(self) -> None:
        self._handles: Dict[str, PluginHandle] = {}

    def load_entrypoints(self, installer: "Installer", group: str = ENTRYPOINT_GROUP) -> None:
        """Discover plugins via entry points."""

        for ep in metadata.entry_points().select(group=group):
            try:
                plugin_obj = ep.load()
                plugin = plugin_obj() if isinstance(plugin_obj, type) else plugin_obj
            except Exception as exc:
                logger.warning("Failed to load install plugin %s: %s", ep.name, exc)
                continue
            self.register_plugin(plugin, installer, plugin_id=str(ep.name))

    def register_plugin(self, plugin: Any, installer: "Installer", *, plugin_id: str | None = None) -> None:
        identifier = plugin_id or getattr(plugin, "name", plugin.__class__.__name__)
        previous = self._handles.pop(identifier, None)
        if previous is not None:
            for callback in previous.subscribers:
                installer.unsubscribe(callback)
        handle = PluginHandle(identifier=identifier, plugin=plugin)
        register = getattr(plugin, "register", None)
        if callable(register):
            try:
                register(PluginRegistrar(installer, handle))
            except Exception as exc:
                raise HookError(f"Plugin {identifier} register() failed: {exc}", original=exc) from exc
        self._handles[identifier] = handle
        logger.debug("Registered install plugin %s", identifier)

    def iter_handles(self) -> Iterable[PluginHandle]:
        return list(self._handles.values())

    def dispatch_before_phase(self, phase: "InstallPhase", installer: "Installer") -> None:
        for handle in self.iter_handles():
            self._invoke(handle, "before_phase", phase, phase, installer)

    def dispatch_after_phase(self, phase: "InstallPhase", result: "PhaseResult", installer: "Installer") -> None:
        for handle in self.iter_handles():
            self._invoke(handle, "after_phase", phase, phase, result, installer)

    def dispatch_error(self, phase: "InstallPhase", error: BaseException, installer: "Installer") -> None:
        for handle in self.iter_handles():
            method = getattr(handle.plugin, "on_error", None)
            if not callable(method):
                continue
            try:
                method(phase, error, installer)
            except Exception:
                logger.warning("Plugin %s on_error failed", handle.identifier, exc_info=True)

    @staticmethod
    def _invoke(handle: PluginHandle, method_name: str, phase: "InstallPhase", *args: Any) -> None:
        method = getattr(handle.plugin, method_name, None)
        if not callable(method):
            return
        try:
            method(*args)
        except HookError:
            raise
        except Exception as exc:
            raise HookError(
                f"Plugin {handle.identifier} {method_name} failed: {exc}",
                phase=phase.value,
                original=exc,
            ) from exc


__all__ = ["ENTRYPOINT_GROUP", "HookManager", "InstallPlugin", "PluginHandle", "PluginRegistrar"]
