"""Logging setup for the command line entry point."""
from __future__ import annotations

import logging
import os

__all__ = ["configure_logging", "logger"]

logger = logging.getLogger("podyard")


def configure_logging(verbose: bool = False) -> logging.Logger:
    """Attach the ``podyard`` handler once.

    Records go to ``PODYARD_LOG_FILE`` when set and are dropped otherwise;
    console output is the installer UI's job.
    """

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not any(getattr(handler, "_podyard", False) for handler in logger.handlers):
        log_file = os.environ.get("PODYARD_LOG_FILE")
        handler: logging.Handler
        if log_file:
            handler = logging.FileHandler(log_file)
            handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        else:
            handler = logging.NullHandler()
        handler._podyard = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    logger.propagate = False
    return logger
