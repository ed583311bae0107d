"""The per-package install protocol: fetch, documentation, clean."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Sequence

from podyard.config import InstallConfig
from podyard.errors import AggregateFetchError, FetchError
from podyard.fetch import FetchResult, Fetcher
from podyard.generator.documentation import DocsGenerator
from podyard.packages import ExternalPackage, LocalPackage
from podyard.sandbox import Sandbox
from podyard.ui import InstallUI

from .run_summary import InstallSummary

logger = logging.getLogger("podyard.install")

INSTALLED = "installed"
USING = "using"
FAILED = "failed"


@dataclass
class PackageOutcome:
    name: str
    status: str
    error: FetchError | None = None
    revision: str | None = None
    from_cache: bool = False


class PackageInstaller:
    """Bring each package of the install set to its fetched, cleaned state.

    Packages are processed in the order given (the registry's sorted order).
    With ``config.jobs > 1`` only the fetches run concurrently; output,
    documentation and cleaning still happen one package at a time in order.
    """

    def __init__(
        self,
        sandbox: Sandbox,
        config: InstallConfig,
        fetcher: Fetcher,
        install_set: Iterable[str],
        *,
        docs_generator: DocsGenerator | None = None,
        summary: InstallSummary | None = None,
        ui: InstallUI | None = None,
        on_outcome: Callable[[PackageOutcome], None] | None = None,
    ) -> None:
        self.sandbox = sandbox
        self.config = config
        self.fetcher = fetcher
        self.install_set = frozenset(install_set)
        self.docs_generator = docs_generator
        self.summary = summary if summary is not None else InstallSummary()
        self.ui = ui or InstallUI(quiet=True)
        self.on_outcome = on_outcome
        self._state_lock = threading.Lock()
        self._root_locks: dict[Path, threading.Lock] = {}

    # ------------------------------------------------------------------
    def install_all(self, packages: Sequence[LocalPackage]) -> list[PackageOutcome]:
        """Run the protocol for every package and return one outcome each.

        Raises the first :class:`FetchError` unless ``continue_on_failure`` is
        set, in which case all failures are raised together as
        :class:`AggregateFetchError` once every package was attempted.
        """

        if self.config.jobs > 1:
            fetched = self._fetch_concurrently(packages)
        else:
            fetched = {}
        outcomes: list[PackageOutcome] = []
        failures: list[FetchError] = []
        for package in packages:
            if isinstance(package, ExternalPackage):
                package.store_specification()
            try:
                outcome = self.install_if_needed(package, prefetched=fetched.get(package.name))
            except FetchError as exc:
                outcome = PackageOutcome(package.name, FAILED, error=exc)
                self._report(outcome)
                self.summary.add_error(str(exc))
                if not self.config.continue_on_failure:
                    raise
                failures.append(exc)
                outcomes.append(outcome)
                continue
            outcomes.append(outcome)
        if failures:
            raise AggregateFetchError(failures, phase="install-packages")
        return outcomes

    def install_if_needed(
        self,
        package: LocalPackage,
        *,
        prefetched: FetchResult | FetchError | None = None,
    ) -> PackageOutcome:
        if package.name not in self.install_set:
            self.ui.info(f"-> Using {package.spec}")
            self.summary.add_reused(package.name)
            outcome = PackageOutcome(package.name, USING)
            self._report(outcome)
            return outcome

        with self.ui.section(f"Installing {package.spec}"):
            if isinstance(prefetched, FetchError):
                raise prefetched
            result = prefetched
            if result is None and not package.is_fetched:
                package.implode()
                result = self._fetch(package)
            elif result is None:
                self.ui.message("Already fetched")
            if result is not None and result.from_cache:
                self.ui.message("Restored from cache")
            self._generate_docs_if_needed(package)
            if self.config.clean:
                package.clean()
        self.summary.add_installed(package.name)
        outcome = PackageOutcome(
            package.name,
            INSTALLED,
            revision=result.resolved_revision if result else None,
            from_cache=bool(result and result.from_cache),
        )
        self._report(outcome)
        return outcome

    # ------------------------------------------------------------------
    def _fetch(self, package: LocalPackage) -> FetchResult:
        lock = self._lock_for(package.root)
        with lock:
            try:
                result = self.fetcher.fetch(
                    package.spec.source,
                    package.root,
                    head=package.spec.head,
                    cache_root=self.config.source_cache_root,
                    max_cache_size_mb=self.config.max_cache_size,
                    aggressive_cache=self.config.aggressive_cache,
                )
            except FetchError as exc:
                exc.package = exc.package or package.name
                exc.phase = exc.phase or "install-packages"
                raise
            except OSError as exc:
                raise FetchError(
                    f"Failed to fetch {package.name}: {exc}",
                    phase="install-packages",
                    package=package.name,
                    original=exc,
                ) from exc
        with self._state_lock:
            package.mark_fetched(result.checkout_options)
            if result.checkout_options:
                self.sandbox.store_checkout_source(package.name, result.checkout_options)
            else:
                self.sandbox.discard_checkout_source(package.name)
        logger.debug("Fetched %s (revision=%s)", package.name, result.resolved_revision)
        return result

    def _fetch_concurrently(self, packages: Sequence[LocalPackage]) -> dict[str, FetchResult | FetchError]:
        pending = [
            package
            for package in packages
            if package.name in self.install_set and not package.is_fetched
        ]
        if not pending:
            return {}
        for package in pending:
            package.implode()

        def _run(package: LocalPackage) -> FetchResult | FetchError:
            try:
                return self._fetch(package)
            except FetchError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=self.config.jobs, thread_name_prefix="podyard-fetch") as executor:
            results = list(executor.map(_run, pending))
        return {package.name: result for package, result in zip(pending, results)}

    def _lock_for(self, root: Path) -> threading.Lock:
        key = Path(root).resolve()
        with self._state_lock:
            lock = self._root_locks.get(key)
            if lock is None:
                lock = self._root_locks[key] = threading.Lock()
            return lock

    def _generate_docs_if_needed(self, package: LocalPackage) -> None:
        if self.docs_generator is None or not self.config.generate_docs:
            return
        if self.docs_generator.already_installed(package):
            self.ui.message("Using existing documentation")
            return
        with self.ui.section("Installing documentation", prefix=" > "):
            self.docs_generator.generate(package, install=self.config.install_docs)

    def _report(self, outcome: PackageOutcome) -> None:
        if self.on_outcome is not None:
            self.on_outcome(outcome)


__all__ = ["FAILED", "INSTALLED", "PackageInstaller", "PackageOutcome", "USING"]
