"""Removal of packages that dropped out of the resolution."""
from __future__ import annotations

import logging
import shutil
from typing import Callable, Iterable

from podyard.errors import CleanupError
from podyard.sandbox import Sandbox

from .run_summary import InstallSummary

logger = logging.getLogger("podyard.install")


def clean_removed_packages(
    sandbox: Sandbox,
    deleted: Iterable[str],
    summary: InstallSummary | None = None,
    *,
    on_removed: Callable[[str], None] | None = None,
) -> tuple[list[str], list[CleanupError]]:
    """Delete ``<sandbox>/<name>`` for every deleted name.

    Each name is handled on its own: a failure is logged and recorded as a
    summary warning, and the remaining names are still processed.
    """

    removed: list[str] = []
    failed: list[CleanupError] = []
    for name in sorted(deleted, key=str.lower):
        root = sandbox.root / name
        if not root.exists() and not root.is_symlink():
            continue
        try:
            if root.is_dir() and not root.is_symlink():
                shutil.rmtree(root)
            else:
                root.unlink()
        except OSError as exc:
            error = CleanupError(f"Could not remove {root}: {exc}", phase="clean-removed", package=name, original=exc)
            logger.warning("%s", error)
            if summary is not None:
                summary.add_warning(str(error))
            failed.append(error)
            continue
        logger.info("Removed %s", name)
        removed.append(name)
        if summary is not None:
            summary.add_removed(name)
        if on_removed is not None:
            on_removed(name)
    return removed, failed


__all__ = ["clean_removed_packages"]
