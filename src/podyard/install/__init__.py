"""Installation pipeline for podyard.

Attributes are resolved lazily: :mod:`podyard.fetch` depends on
:mod:`podyard.install.run_summary`, and the installer depends on the fetchers.
"""

from importlib import import_module
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .cleanup import clean_removed_packages
    from .decision import decide_install_set
    from .events import InstallEvent, InstallEventType, LogEvent, PackageEvent, PhaseEvent
    from .hooks import HookManager, InstallPlugin
    from .installer import InstallReport, Installer, run_install
    from .journal import InstallRunJournal, load_last_run
    from .package_installer import PackageInstaller, PackageOutcome
    from .phases import OPTIONAL_PHASES, PHASE_ORDER, InstallPhase, PhaseResult, PhaseStatus
    from .registry import build_registry
    from .run_summary import InstallSummary

_LAZY_ATTRS = {
    "clean_removed_packages": ".cleanup",
    "decide_install_set": ".decision",
    "InstallEvent": ".events",
    "InstallEventType": ".events",
    "LogEvent": ".events",
    "PackageEvent": ".events",
    "PhaseEvent": ".events",
    "HookManager": ".hooks",
    "InstallPlugin": ".hooks",
    "InstallReport": ".installer",
    "Installer": ".installer",
    "run_install": ".installer",
    "InstallRunJournal": ".journal",
    "load_last_run": ".journal",
    "PackageInstaller": ".package_installer",
    "PackageOutcome": ".package_installer",
    "OPTIONAL_PHASES": ".phases",
    "PHASE_ORDER": ".phases",
    "InstallPhase": ".phases",
    "PhaseResult": ".phases",
    "PhaseStatus": ".phases",
    "build_registry": ".registry",
    "InstallSummary": ".run_summary",
}


def __getattr__(name: str):
    try:
        module_name = _LAZY_ATTRS[name]
    except KeyError as exc:
        raise AttributeError(name) from exc
    value = getattr(import_module(module_name, __name__), name)
    globals()[name] = value
    return value


__all__ = sorted(_LAZY_ATTRS)
