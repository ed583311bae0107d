"""Module executed when running ``python -m podyard``."""
from __future__ import annotations

from .cli import main


def run() -> None:
    """Entrypoint wrapper to make ``python -m podyard`` explicit."""

    raise SystemExit(main())


if __name__ == "__main__":  # pragma: no cover - exercised via CLI
    run()
