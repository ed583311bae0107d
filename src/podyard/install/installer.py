"""The installer: runs every phase of an install in a fixed order."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

from podyard import __version__
from podyard.config import InstallConfig, Recipe, parse_bool
from podyard.errors import (
    CleanupError,
    FetchError,
    HookError,
    InstallError,
    IntegrationError,
    PersistenceError,
    ResolutionError,
)
from podyard.fetch import CommandRunner, Fetcher, SourceFetcher
from podyard.generator import (
    Acknowledgements,
    BuildProject,
    DocsGenerator,
    DummySource,
    Library,
    MarkdownDocsGenerator,
    TargetInstaller,
)
from podyard.integration import HostIntegrator, ManifestIntegrator
from podyard.lockfile import InstallationRecord, write_records
from podyard.packages import LocalPackage, PostInstallContext, PreInstallContext
from podyard.paths import default_cache_root
from podyard.resolution import Resolution, SandboxStateDiff, TargetDefinition
from podyard.sandbox import Sandbox
from podyard.telemetry import NullTelemetryClient, TelemetryClient
from podyard.ui import InstallUI

from .cleanup import clean_removed_packages
from .decision import decide_install_set
from .events import InstallEvent, LogEvent, PackageEvent, PhaseEvent
from .hooks import HookManager
from .journal import JournalWriter
from .package_installer import PackageInstaller, PackageOutcome
from .phases import OPTIONAL_PHASES, PHASE_ORDER, InstallPhase, PhaseResult, PhaseStatus
from .registry import Registry, build_registry
from .run_summary import InstallSummary

_PHASE_ERRORS: dict[InstallPhase, type[InstallError]] = {
    InstallPhase.ANALYZE: ResolutionError,
    InstallPhase.REGISTRY: ResolutionError,
    InstallPhase.DECISION: ResolutionError,
    InstallPhase.CLEAN_GLOBAL: InstallError,
    InstallPhase.CLEAN_REMOVED: CleanupError,
    InstallPhase.INSTALL_PACKAGES: FetchError,
    InstallPhase.GENERATE_TARGETS: InstallError,
    InstallPhase.WRITE_RECORDS: PersistenceError,
    InstallPhase.INTEGRATE: IntegrationError,
}

_PHASE_TITLES: dict[InstallPhase, str] = {
    InstallPhase.ANALYZE: "Analyzing dependencies",
    InstallPhase.INSTALL_PACKAGES: "Downloading dependencies",
    InstallPhase.GENERATE_TARGETS: "Generating Pods project",
    InstallPhase.INTEGRATE: "Integrating client project",
}

TargetInstallerFactory = Callable[[Sandbox, BuildProject, Library], TargetInstaller]


@dataclass
class InstallReport:
    """Everything one run decided and produced."""

    results: list[PhaseResult] = field(default_factory=list)
    outcomes: list[PackageOutcome] = field(default_factory=list)
    diff: SandboxStateDiff | None = None
    install_set: frozenset[str] = frozenset()
    removed: list[str] = field(default_factory=list)
    cleanup_failures: list[CleanupError] = field(default_factory=list)
    record: InstallationRecord | None = None
    journal_path: Path | None = None
    error: InstallError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and all(res.status is not PhaseStatus.FAILED for res in self.results)

    def outcome_for(self, name: str) -> PackageOutcome | None:
        return next((outcome for outcome in self.outcomes if outcome.name == name), None)

    def phases(self, status: PhaseStatus | None = None) -> list[InstallPhase]:
        return [res.phase for res in self.results if status is None or res.status is status]


class Installer:
    """Bring a sandbox in line with a resolution.

    Phases run strictly in :data:`PHASE_ORDER`; each phase method documents
    what it expects from the previous ones. Collaborators are injectable so
    tests can swap the fetcher, generators and integrator.
    """

    def __init__(
        self,
        config: InstallConfig,
        resolution: Resolution,
        *,
        recipe: Recipe | None = None,
        sandbox: Sandbox | None = None,
        fetcher: Fetcher | None = None,
        docs_generator: DocsGenerator | None = None,
        integrator: HostIntegrator | None = None,
        target_installer_factory: TargetInstallerFactory = TargetInstaller,
        hook_manager: HookManager | None = None,
        telemetry: TelemetryClient | NullTelemetryClient | None = None,
        summary: InstallSummary | None = None,
        ui: InstallUI | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.resolution = resolution
        self.recipe = recipe
        self.logger = logger or logging.getLogger("podyard.install")
        self.sandbox = sandbox or Sandbox(config.sandbox_root)
        self.summary = summary if summary is not None else InstallSummary()
        self.ui = ui or InstallUI(verbose=config.verbose)
        self.fetcher: Fetcher = fetcher or SourceFetcher(CommandRunner(self.summary))
        self.docs_generator: DocsGenerator = docs_generator or MarkdownDocsGenerator(
            self.sandbox,
            install_root=(config.cache_root or default_cache_root()) / "docs",
        )
        self.integrator: HostIntegrator = integrator or ManifestIntegrator(config.project_root)
        self.target_installer_factory = target_installer_factory
        self.hooks = hook_manager or HookManager()
        self.telemetry: TelemetryClient | NullTelemetryClient = telemetry or NullTelemetryClient()
        self.phase_order: tuple[InstallPhase, ...] = PHASE_ORDER
        self._subscribers: list[Callable[[InstallEvent], None]] = []
        self._journal = JournalWriter(self.sandbox.root)

        # Filled in phase by phase.
        self.previous_record: InstallationRecord | None = None
        self.diff: SandboxStateDiff | None = None
        self.registry: Registry = {}
        self.packages: list[LocalPackage] = []
        self.install_set: frozenset[str] = frozenset()
        self.project: BuildProject | None = None
        self.target_installers: list[TargetInstaller] = []
        self.record: InstallationRecord | None = None
        self.report = InstallReport()

        self._phase_methods: dict[InstallPhase, Callable[[], Mapping[str, Any] | None]] = {
            InstallPhase.ANALYZE: self.analyze,
            InstallPhase.REGISTRY: self.build_registry,
            InstallPhase.DECISION: self.decide,
            InstallPhase.CLEAN_GLOBAL: self.clean_global,
            InstallPhase.CLEAN_REMOVED: self.clean_removed,
            InstallPhase.INSTALL_PACKAGES: self.install_packages,
            InstallPhase.GENERATE_TARGETS: self.generate_targets,
            InstallPhase.WRITE_RECORDS: self.write_records,
            InstallPhase.INTEGRATE: self.integrate,
        }

    # --- events ---------------------------------------------------------
    def subscribe(self, callback: Callable[[InstallEvent], None]) -> None:
        """Register *callback* to receive installer events."""

        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[InstallEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _publish(self, event: InstallEvent) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                self.logger.debug("event subscriber failed", exc_info=True)

    # --- lifecycle ------------------------------------------------------
    def install(self) -> InstallReport:
        """Run every phase and return the report.

        Raises the first :class:`InstallError`; the report, journal and
        telemetry still reflect the phases that ran.
        """

        metadata = {
            "version": __version__,
            "project_root": str(self.config.project_root),
            "sandbox": str(self.sandbox.root),
            "recipe": self.recipe.name if self.recipe else None,
            "update_mode": self.config.update_mode,
            "jobs": self.config.jobs,
            "phases": [phase.value for phase in self.phase_order],
        }
        self._journal.start(metadata)
        self.telemetry.start_run(
            version=__version__,
            jobs=self.config.jobs,
            update_mode=self.config.update_mode,
            packages=len(self.resolution.specifications),
        )
        try:
            for phase in self.phase_order:
                self._run_phase(phase)
        except InstallError as exc:
            self.report.error = exc
            self.summary.add_error(str(exc))
            self._journal.record_outcome("failed", phase=exc.phase, error=str(exc), summary=self.summary.as_dict())
            raise
        else:
            self._journal.record_outcome("success", summary=self.summary.as_dict())
        finally:
            self.report.journal_path = self._journal.path
            self._journal.close()
            self.telemetry.flush()
        return self.report

    def _phase_skip_reason(self, phase: InstallPhase) -> str | None:
        if phase not in OPTIONAL_PHASES:
            return None
        if phase is InstallPhase.INTEGRATE and not self.config.integrate_targets:
            return "integration disabled"
        phase_config = self.recipe.phase_config(phase) if self.recipe else {}
        if parse_bool(phase_config.get("skip", False), f"phases.{phase.value}.skip"):
            return "skipped by recipe"
        return None

    def _run_phase(self, phase: InstallPhase) -> PhaseResult:
        reason = self._phase_skip_reason(phase)
        if reason is not None:
            result = PhaseResult(phase, PhaseStatus.SKIPPED, payload={"reason": reason})
            self._record_result(result)
            self._publish(PhaseEvent(phase, status="skipped", message=reason))
            return result

        if phase is InstallPhase.CLEAN_GLOBAL:
            # First phase that mutates the sandbox.
            self._journal.materialize()
        title = _PHASE_TITLES.get(phase)
        if title:
            self.ui.title(title)
        self._publish(PhaseEvent(phase, status="started"))
        started = time.time()
        try:
            self.hooks.dispatch_before_phase(phase, self)
            payload = self._phase_methods[phase]() or {}
        except Exception as exc:
            error = self._wrap_error(phase, exc)
            result = PhaseResult(
                phase,
                PhaseStatus.FAILED,
                error=error,
                started_at=started,
                finished_at=time.time(),
            )
            self._record_result(result)
            self._publish(PhaseEvent(phase, status="failed", message=str(error)))
            self.hooks.dispatch_error(phase, error, self)
            if error is exc:
                raise
            raise error from exc
        result = PhaseResult(
            phase,
            PhaseStatus.SUCCESS,
            payload=dict(payload),
            started_at=started,
            finished_at=time.time(),
        )
        self._record_result(result)
        self._publish(PhaseEvent(phase, status="completed", payload=result.payload))
        self.hooks.dispatch_after_phase(phase, result, self)
        return result

    def _record_result(self, result: PhaseResult) -> None:
        self.report.results.append(result)
        self._journal.record_phase(result)
        self.telemetry.phase_finished(
            result.phase.value,
            result.status.value,
            result.duration,
            error=result.error,
        )

    @staticmethod
    def _wrap_error(phase: InstallPhase, exc: BaseException) -> InstallError:
        if isinstance(exc, InstallError):
            if exc.phase is None:
                exc.phase = phase.value
            return exc
        error_type = _PHASE_ERRORS.get(phase, InstallError)
        message = str(exc) or type(exc).__name__
        return error_type(message, phase=phase.value, original=exc)

    def _record_outcome(self, outcome: PackageOutcome) -> None:
        self.report.outcomes.append(outcome)
        error = str(outcome.error) if outcome.error else None
        self._journal.record_package(outcome.name, outcome.status, error=error, revision=outcome.revision)
        self.telemetry.package_finished(
            outcome.name,
            outcome.status,
            cache_hit=outcome.from_cache,
            revision=outcome.revision,
            error=outcome.error,
        )
        self._publish(PackageEvent(outcome.name, status=outcome.status, error=error))

    # --- phases ---------------------------------------------------------
    def analyze(self) -> dict[str, Any]:
        """Read the previous manifest and classify every resolved package.

        Touches nothing on disk. A diff supplied with the resolution wins over
        the one computed from the manifest.
        """

        specs = self.resolution.specifications
        self.previous_record = self.sandbox.previous_record()
        self.sandbox.load_checkout_sources(self.previous_record)
        diff = self.resolution.sandbox_state
        if diff is None:
            diff = SandboxStateDiff.compute(
                self.previous_record,
                specs,
                external_sources=self.resolution.external_sources(),
            )
        diff.validate(spec.name for spec in specs)
        self.diff = diff
        self.report.diff = diff
        for name in sorted(diff.added, key=str.lower):
            self.ui.message(f"A {name}")
        for name in sorted(diff.changed, key=str.lower):
            self.ui.message(f"M {name}")
        for name in sorted(diff.deleted, key=str.lower):
            self.ui.message(f"R {name}")
        return diff.as_dict()

    def build_registry(self) -> dict[str, Any]:
        """Materialize one package object per (name, platform). Requires :meth:`analyze`."""

        self.registry, self.packages = build_registry(
            self.resolution.specs_by_target,
            self.sandbox,
            external_names=self.resolution.external_source_names,
        )
        return {"packages": [package.name for package in self.packages]}

    def decide(self) -> dict[str, Any]:
        assert self.diff is not None
        self.install_set = decide_install_set(
            self.diff,
            self.packages,
            update_mode=self.config.update_mode,
            external_names=self.resolution.external_source_names,
        )
        self.report.install_set = self.install_set
        self.ui.message(f"{len(self.install_set)} package(s) to install")
        return {"install": sorted(self.install_set, key=str.lower)}

    def clean_global(self) -> dict[str, Any]:
        """Drop the derived trees every run regenerates. Runs unconditionally."""

        self.sandbox.create()
        removed = self.sandbox.prepare_for_install()
        return {"removed": [str(path) for path in removed]}

    def clean_removed(self) -> dict[str, Any]:
        """Delete packages the diff reports as deleted. Never raises for a single name."""

        assert self.diff is not None

        def _announce(name: str) -> None:
            self.ui.info(f"-> Removing {name}")
            self._record_outcome(PackageOutcome(name, "removed"))

        removed, failed = clean_removed_packages(
            self.sandbox,
            self.diff.deleted,
            self.summary,
            on_removed=_announce,
        )
        for error in failed:
            self.ui.warn(str(error))
            self._publish(LogEvent("warning", str(error), payload={"package": error.package}))
        self.report.removed = removed
        self.report.cleanup_failures = failed
        return {"removed": removed, "failed": [error.package for error in failed]}

    def install_packages(self) -> dict[str, Any]:
        """Run the per-package protocol over the sorted registry.

        All cleanup has completed by now, so parallel fetches never race it.
        """

        installer = PackageInstaller(
            self.sandbox,
            self.config,
            self.fetcher,
            self.install_set,
            docs_generator=self.docs_generator,
            summary=self.summary,
            ui=self.ui,
            on_outcome=self._record_outcome,
        )
        outcomes = installer.install_all(self.packages)
        return {
            "installed": [outcome.name for outcome in outcomes if outcome.status == "installed"],
            "using": [outcome.name for outcome in outcomes if outcome.status == "using"],
        }

    def generate_targets(self) -> dict[str, Any]:
        """Build the project and support files; hooks run before the project is saved."""

        self.prepare_project()
        self.target_installers = self.create_target_installers()
        for package in self.packages:
            package.add_file_references_to_project(self.project)
        for package in self.packages:
            for header in package.link_headers():
                self.summary.add_warning(f"{package.name}: header {header.name} is linked from another directory")
        self.run_pre_install_hooks()
        for target_installer in self.target_installers:
            self.install_target(target_installer)
        self.run_post_install_hooks()
        assert self.project is not None
        self.project.save_as(self.sandbox.project_path)
        return {"targets": [installer.label for installer in self.target_installers]}

    def write_records(self) -> dict[str, Any]:
        self.record = InstallationRecord.generate(
            self.resolution,
            checkout_sources=self.sandbox.checkout_sources,
        )
        write_records(self.record, self.config.lockfile_path, self.sandbox.manifest_path)
        self.report.record = self.record
        return {"lockfile": str(self.config.lockfile_path), "manifest": str(self.sandbox.manifest_path)}

    def integrate(self) -> dict[str, Any]:
        libraries = [installer.library for installer in self.target_installers]
        self.integrator.integrate(self.sandbox, libraries)
        return {"targets": [library.label for library in libraries]}

    # --- target generation steps ---------------------------------------
    def prepare_project(self) -> BuildProject:
        if self.project is None:
            self.project = BuildProject(self.sandbox.root)
            if self.resolution.project.path is not None:
                self.project.add_project_file(self.resolution.project.path)
        return self.project

    def create_target_installers(self) -> list[TargetInstaller]:
        assert self.project is not None
        installers: list[TargetInstaller] = []
        for target, specs in self.resolution.specs_by_target.items():
            if target.is_empty:
                self.ui.message(f"Skipping empty target {target.name}")
                continue
            library = Library(target, specs=list(specs), packages=list(self.registry.get(target, [])))
            installers.append(self.target_installer_factory(self.sandbox, self.project, library))
        return installers

    def install_target(self, target_installer: TargetInstaller) -> None:
        library = target_installer.library
        with self.ui.section(f"Installing target `{library.label}` {library.platform}"):
            target_installer.install()
            acknowledgements = library.acknowledgements_path(self.sandbox)
            Acknowledgements(library).save_as(acknowledgements)
            dummy = DummySource(library.label).save_as(library.dummy_source_path(self.sandbox))
            assert self.project is not None
            group = self.project.add_support_group(library.label)
            for path in (acknowledgements, dummy):
                reference = path.relative_to(self.sandbox.root).as_posix()
                self.project.add_file_reference(group, reference)
            sources = self.project.target_named(library.label)["sources"]
            dummy_reference = dummy.relative_to(self.sandbox.root).as_posix()
            if dummy_reference not in sources:
                sources.append(dummy_reference)

    def run_pre_install_hooks(self) -> None:
        for target, packages in self.registry.items():
            for package in packages:
                self._call_hook(
                    package.pre_install,
                    PreInstallContext(package, target),
                    package=package.name,
                    target=target,
                    kind="pre_install",
                )
        self._call_hook(self.resolution.project.run_pre_install, self, kind="project pre_install")

    def run_post_install_hooks(self) -> None:
        for target_installer in self.target_installers:
            target = target_installer.target_definition
            by_name = {package.name: package for package in target_installer.library.packages}
            for spec in target_installer.library.specs:
                package = by_name.get(spec.name)
                if package is None:
                    continue
                self._call_hook(
                    package.post_install,
                    PostInstallContext(target_installer, spec),
                    package=spec.name,
                    target=target,
                    kind="post_install",
                )
        self._call_hook(self.resolution.project.run_post_install, self, kind="project post_install")

    def _call_hook(
        self,
        hook: Callable[[Any], None],
        context: Any,
        *,
        kind: str,
        package: str | None = None,
        target: TargetDefinition | None = None,
    ) -> None:
        try:
            hook(context)
        except HookError:
            raise
        except Exception as exc:
            raise HookError(
                f"{kind} hook failed: {exc}",
                phase=InstallPhase.GENERATE_TARGETS.value,
                package=package,
                target=target.name if target is not None else None,
                original=exc,
            ) from exc


def run_install(
    config: InstallConfig,
    resolution: Resolution,
    *,
    recipe: Recipe | None = None,
    load_plugins: bool = True,
    **kwargs: Any,
) -> InstallReport:
    """Convenience wrapper: build an :class:`Installer`, load plugins and run it."""

    installer = Installer(config, resolution, recipe=recipe, **kwargs)
    if load_plugins:
        installer.hooks.load_entrypoints(installer)
    return installer.install()


__all__ = ["InstallReport", "Installer", "run_install"]
