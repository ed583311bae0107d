"""Decide which packages a run must (re)install."""
from __future__ import annotations

from typing import Iterable

from podyard.packages import LocalPackage
from podyard.resolution import SandboxStateDiff


def decide_install_set(
    diff: SandboxStateDiff,
    packages: Iterable[LocalPackage],
    *,
    update_mode: bool = False,
    external_names: Iterable[str] = (),
) -> frozenset[str]:
    """Return the names of the packages to install.

    The rules apply in order and only ever add names:

    1. in update mode, every non path-based package that tracks head or comes
       from an external source;
    2. everything the diff reports as added or changed;
    3. every package whose root is missing on disk, whatever the diff says.

    Path-based packages are used in place and never promoted by rule 1.
    """

    packages = list(packages)
    external = frozenset(external_names)
    names: set[str] = set()
    if update_mode:
        names.update(
            package.name
            for package in packages
            if not package.is_local and (package.spec.head or package.name in external)
        )
    names.update(diff.added)
    names.update(diff.changed)
    names.update(package.name for package in packages if not package.exists())
    return frozenset(names)


__all__ = ["decide_install_set"]
