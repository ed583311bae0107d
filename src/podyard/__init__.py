"""Public package interface for podyard."""

__version__ = "0.4.0"

from importlib import import_module
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - import real symbols for type checking
    from .config import InstallConfig
    from .install import Installer, InstallReport
    from .resolution import PackageSpec, Resolution, TargetDefinition, load_resolution

_LAZY_ATTRS = {
    "InstallConfig": ("podyard.config", "InstallConfig"),
    "Installer": ("podyard.install", "Installer"),
    "InstallReport": ("podyard.install", "InstallReport"),
    "PackageSpec": ("podyard.resolution", "PackageSpec"),
    "Resolution": ("podyard.resolution", "Resolution"),
    "TargetDefinition": ("podyard.resolution", "TargetDefinition"),
    "load_resolution": ("podyard.resolution", "load_resolution"),
}


def __getattr__(name: str):
    try:
        module_name, attr = _LAZY_ATTRS[name]
    except KeyError as exc:
        raise AttributeError(name) from exc
    module = import_module(module_name)
    value = getattr(module, attr)
    globals()[name] = value
    return value


__all__ = [
    "InstallConfig",
    "InstallReport",
    "Installer",
    "PackageSpec",
    "Resolution",
    "TargetDefinition",
    "__version__",
    "load_resolution",
]
