import json
import shutil

import pytest
import yaml

from conftest import FakeFetcher, make_resolution, make_spec
from podyard.errors import FetchError, IntegrationError, ResolutionError
from podyard.install import (
    PHASE_ORDER,
    InstallPhase,
    InstallSummary,
    PhaseEvent,
    PhaseStatus,
    load_last_run,
)
from podyard.resolution import SandboxStateDiff


def _lockfile(config):
    return yaml.safe_load(config.lockfile_path.read_text(encoding="utf-8"))


def test_first_install_runs_every_phase(config, make_installer, fetcher):
    resolution = make_resolution({"App": [make_spec("alpha"), make_spec("Beta")]})
    installer = make_installer(config, resolution)

    report = installer.install()

    assert report.succeeded
    assert report.phases() == list(PHASE_ORDER)
    assert fetcher.calls == ["alpha", "Beta"]
    assert report.install_set == {"alpha", "Beta"}
    assert config.lockfile_path.read_bytes() == installer.sandbox.manifest_path.read_bytes()
    assert _lockfile(config)["PODS"] == ["alpha (1.0.0)", "Beta (1.0.0)"]
    integration = json.loads((config.project_root / ".podyard" / "integration.json").read_text(encoding="utf-8"))
    assert integration["targets"]["App"]["label"] == "Pods-App"
    assert integration["targets"]["App"]["packages"] == ["alpha", "Beta"]


def test_second_run_is_idempotent(config, make_installer):
    resolution = make_resolution({"App": [make_spec("alpha"), make_spec("Beta")]})
    make_installer(config, resolution).install()
    first_lock = config.lockfile_path.read_bytes()
    fetcher = FakeFetcher()
    summary = InstallSummary()

    report = make_installer(config, resolution, fetcher=fetcher, summary=summary).install()

    assert fetcher.calls == []
    assert report.install_set == frozenset()
    assert report.diff.unchanged == {"alpha", "Beta"}
    assert summary.reused == ["alpha", "Beta"]
    assert config.lockfile_path.read_bytes() == first_lock


def test_package_deleted_from_disk_is_refetched(config, make_installer):
    resolution = make_resolution({"App": [make_spec("alpha"), make_spec("Beta")]})
    first = make_installer(config, resolution)
    first.install()
    shutil.rmtree(first.sandbox.root / "Beta")
    fetcher = FakeFetcher()

    make_installer(config, resolution, fetcher=fetcher).install()

    assert fetcher.calls == ["Beta"]
    assert (config.sandbox_root / "Beta" / "Classes" / "Beta.m").is_file()


def test_dropped_package_is_removed(config, make_installer):
    make_installer(config, make_resolution({"App": [make_spec("alpha"), make_spec("Beta")]})).install()
    summary = InstallSummary()

    report = make_installer(config, make_resolution({"App": [make_spec("alpha")]}), summary=summary).install()

    assert report.removed == ["Beta"]
    assert summary.removed == ["Beta"]
    assert not (config.sandbox_root / "Beta").exists()
    assert _lockfile(config)["PODS"] == ["alpha (1.0.0)"]


def test_version_change_refetches_only_that_package(config, make_installer):
    make_installer(config, make_resolution({"App": [make_spec("alpha"), make_spec("Beta")]})).install()
    fetcher = FakeFetcher()

    report = make_installer(
        config,
        make_resolution({"App": [make_spec("alpha", "1.1.0"), make_spec("Beta")]}),
        fetcher=fetcher,
    ).install()

    assert report.diff.changed == {"alpha"}
    assert fetcher.calls == ["alpha"]


def test_update_mode_refetches_head_packages(config, make_installer):
    resolution = make_resolution({"App": [make_spec("Tip", head=True), make_spec("Pinned")]})
    make_installer(config, resolution).install()
    assert _lockfile(config)["CHECKOUT OPTIONS"] == {
        "Tip": {"git": "https://example.com/Tip.git", "commit": "0123abcd"}
    }

    fetcher = FakeFetcher(revision="89abcdef")
    make_installer(config, resolution, fetcher=fetcher).install()
    assert fetcher.calls == []
    assert _lockfile(config)["CHECKOUT OPTIONS"]["Tip"]["commit"] == "0123abcd"

    make_installer(config.with_overrides(update_mode=True), resolution, fetcher=fetcher).install()
    assert fetcher.calls == ["Tip"]
    assert _lockfile(config)["CHECKOUT OPTIONS"]["Tip"]["commit"] == "89abcdef"


def test_supplied_sandbox_state_wins(config, make_installer, fetcher):
    resolution = make_resolution({"App": [make_spec("alpha"), make_spec("Beta")]})
    resolution.sandbox_state = SandboxStateDiff(added=frozenset({"Beta"}), unchanged=frozenset({"alpha"}))
    (config.sandbox_root / "alpha").mkdir(parents=True)

    report = make_installer(config, resolution).install()

    assert report.install_set == {"Beta"}
    assert fetcher.calls == ["Beta"]


def test_resolution_error_leaves_disk_untouched(config, make_installer, tmp_path, fetcher):
    missing = tmp_path / "missing"
    resolution = make_resolution(
        {"App": [make_spec("Kit"), make_spec("Ghost", local_path=missing, source={"path": str(missing)})]}
    )
    installer = make_installer(config, resolution)

    with pytest.raises(ResolutionError) as excinfo:
        installer.install()

    assert excinfo.value.phase == "registry"
    assert excinfo.value.package == "Ghost"
    assert fetcher.calls == []
    assert not config.sandbox_root.exists()
    assert not config.lockfile_path.exists()
    assert installer.report.phases(PhaseStatus.FAILED) == [InstallPhase.REGISTRY]


def test_fetch_failure_keeps_previous_records(config, make_installer):
    resolution = make_resolution({"App": [make_spec("alpha")]})
    make_installer(config, resolution).install()
    previous = config.lockfile_path.read_bytes()

    with pytest.raises(FetchError) as excinfo:
        make_installer(
            config,
            make_resolution({"App": [make_spec("alpha"), make_spec("Beta")]}),
            fetcher=FakeFetcher(fail={"Beta"}),
        ).install()

    assert excinfo.value.phase == "install-packages"
    assert config.lockfile_path.read_bytes() == previous


def test_integration_can_be_disabled(config, make_installer):
    resolution = make_resolution({"App": [make_spec("alpha")]})

    report = make_installer(config.with_overrides(integrate_targets=False), resolution).install()

    (result,) = [res for res in report.results if res.phase is InstallPhase.INTEGRATE]
    assert result.status is PhaseStatus.SKIPPED
    assert not (config.project_root / ".podyard" / "integration.json").exists()
    assert config.lockfile_path.is_file()


def test_integration_failure_is_reported_after_records(config, make_installer):
    class BrokenIntegrator:
        def integrate(self, sandbox, libraries):
            raise OSError("read-only project")

    resolution = make_resolution({"App": [make_spec("alpha")]})

    with pytest.raises(IntegrationError) as excinfo:
        make_installer(config, resolution, integrator=BrokenIntegrator()).install()

    assert excinfo.value.phase == "integrate"
    assert isinstance(excinfo.value.original, OSError)
    assert config.lockfile_path.is_file()


def test_events_and_journal(config, make_installer):
    resolution = make_resolution({"App": [make_spec("alpha")]})
    installer = make_installer(config, resolution)
    events = []
    installer.subscribe(events.append)
    installer.subscribe(lambda event: 1 / 0)

    report = installer.install()

    phase_events = [(event.phase, event.status) for event in events if isinstance(event, PhaseEvent)]
    assert phase_events[:2] == [(InstallPhase.ANALYZE, "started"), (InstallPhase.ANALYZE, "completed")]
    assert [event.package for event in events if getattr(event, "package", None)] == ["alpha"]

    journal = load_last_run(config.sandbox_root)
    assert journal is not None
    assert journal.path == report.journal_path
    assert journal.succeeded
    assert [res.phase for res in journal.results] == list(PHASE_ORDER)
    assert journal.packages[0]["package"] == "alpha"
    assert journal.packages[0]["status"] == "installed"
    assert journal.outcome["summary"]["installed"] == ["alpha"]
    assert journal.outcome["summary"]["errors"] == []


@pytest.mark.parametrize("jobs", [1, 3])
def test_package_shared_across_platforms_is_fetched_once(config, make_installer, fetcher, jobs):
    shared = make_spec("Shared", platform="any")
    resolution = make_resolution({"App": [shared], "Mac": [shared]}, platforms={"Mac": "osx"})

    report = make_installer(config.with_overrides(jobs=jobs), resolution).install()

    assert fetcher.calls == ["Shared"]
    assert [(outcome.name, outcome.status) for outcome in report.outcomes] == [("Shared", "installed")]
    assert (config.sandbox_root / "Shared" / "Classes" / "Shared.m").is_file()
    assert not (config.sandbox_root / "Shared" / "README.md").exists()
