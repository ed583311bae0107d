"""Argument parsing and CLI orchestration for ``podyard``."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Sequence

from rich.table import Table

from podyard.config import InstallConfig, RecipeLoader
from podyard.errors import InstallError
from podyard.install import InstallSummary, load_last_run, run_install
from podyard.paths import DEFAULT_RESOLUTION_NAME, default_cache_root, project_root
from podyard.resolution import load_resolution
from podyard.telemetry import telemetry_from_environment
from podyard.ui import InstallUI, make_console

from ._logging import configure_logging, logger

__all__ = ["main"]


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="podyard",
        description="Install resolved packages into the project sandbox.",
    )
    sub = parser.add_subparsers(dest="command", required=False)

    for name, help_text in (
        ("install", "Install the resolved packages"),
        ("update", "Install, refetching head and externally sourced packages"),
    ):
        p_install = sub.add_parser(name, help=help_text)
        p_install.add_argument("--resolution", type=Path, default=None, help="Resolver output (YAML or JSON)")
        p_install.add_argument("--project-root", type=Path, default=None)
        p_install.add_argument("--recipe", type=str, default=None, help="Recipe name or path")
        p_install.add_argument("--no-clean", action="store_true", help="Keep files the specs do not use")
        p_install.add_argument("--no-integrate", action="store_true", help="Skip host project integration")
        p_install.add_argument("--jobs", type=int, default=None, help="Concurrent fetches")
        p_install.add_argument("--continue-on-failure", action="store_true")
        p_install.add_argument("--verbose", action="store_true")

    p_last = sub.add_parser("last-run", help="Show the most recent install run")
    p_last.add_argument("--project-root", type=Path, default=None)
    p_last.add_argument("--sandbox-dir", type=str, default=None)

    parser.set_defaults(command="install")
    args = parser.parse_args(argv)
    # ``podyard`` with no sub-command behaves like ``podyard install``.
    for attribute, default in (
        ("resolution", None),
        ("project_root", None),
        ("recipe", None),
        ("no_clean", False),
        ("no_integrate", False),
        ("jobs", None),
        ("continue_on_failure", False),
        ("verbose", False),
    ):
        if not hasattr(args, attribute):
            setattr(args, attribute, default)
    return args


def _config_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.command == "update":
        overrides["update_mode"] = True
    if args.no_clean:
        overrides["clean"] = False
    if args.no_integrate:
        overrides["integrate_targets"] = False
    if args.jobs is not None:
        overrides["jobs"] = args.jobs
    if args.continue_on_failure:
        overrides["continue_on_failure"] = True
    if args.verbose:
        overrides["verbose"] = True
    return overrides


def run_install_command(args: argparse.Namespace, summary: InstallSummary, ui: InstallUI) -> int:
    root = (args.project_root or project_root()).resolve()
    recipe = RecipeLoader(project_root=root).load(args.recipe, overrides=_config_overrides(args))
    config = InstallConfig.from_recipe(root, recipe)
    resolution = load_resolution(args.resolution or root / DEFAULT_RESOLUTION_NAME)
    telemetry = telemetry_from_environment(config.cache_root or default_cache_root())
    report = run_install(config, resolution, recipe=recipe, summary=summary, ui=ui, telemetry=telemetry)
    logger.info("Install finished: %d phase(s)", len(report.results))
    ui.info(f"Pod installation complete! {len(summary.installed)} package(s) installed.")
    return 0


def show_last_run(args: argparse.Namespace, ui: InstallUI) -> int:
    root = (args.project_root or project_root()).resolve()
    sandbox_root = root / (args.sandbox_dir or InstallConfig(project_root=root).sandbox_dir)
    journal = load_last_run(sandbox_root)
    if journal is None:
        ui.warn(f"No install runs recorded below {sandbox_root}")
        return 1
    table = Table(title=f"Last install run ({journal.path.name})")
    table.add_column("Phase")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Error")
    for result in journal.results:
        table.add_row(result.phase.value, result.status.value, f"{result.duration:.2f}s", result.error_repr or "")
    ui.console.print(table)
    for entry in journal.packages:
        ui.info(f"{entry.get('status', '?'):>9}  {entry.get('package')}")
    return 0 if journal.succeeded else 1


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.verbose)
    console = make_console()
    ui = InstallUI(console, verbose=args.verbose)
    if args.command == "last-run":
        return show_last_run(args, ui)

    summary = InstallSummary()
    exit_code = 0
    try:
        exit_code = run_install_command(args, summary, ui)
    except InstallError as exc:
        logger.error("Install failed: %s", exc)
        if str(exc) not in summary.errors:
            summary.add_error(str(exc))
        exit_code = 1
    except (OSError, ValueError, TypeError, RuntimeError) as exc:
        # Recipe and config problems surface before the installer runs.
        logger.error("Install aborted: %s", exc)
        summary.add_error(f"{exc.__class__.__name__}: {exc}")
        exit_code = 1
    except KeyboardInterrupt:
        summary.add_warning("Interrupted by user.")
        exit_code = 130
    finally:
        console.print(summary.as_panel())
        console.flush()
    return exit_code
