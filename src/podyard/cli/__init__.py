"""Command line entry point for podyard."""
from __future__ import annotations

from ._cli import main

__all__ = ["main"]
