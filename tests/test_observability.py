import json

import pytest
import requests

from conftest import FakeFetcher, make_resolution, make_spec
from podyard.errors import AggregateFetchError, ResolutionError
from podyard.install import InstallPhase, PhaseResult, PhaseStatus, load_last_run
from podyard.install.journal import JournalWriter, journal_directory
from podyard.telemetry import (
    HttpTelemetryStorage,
    InMemoryTelemetryStorage,
    JsonlTelemetryStorage,
    NullTelemetryClient,
    PackageTelemetry,
    PhaseTelemetry,
    RunTelemetry,
    TelemetryClient,
    TelemetryEventType,
    telemetry_from_environment,
)


def test_journal_is_deferred_until_materialized(tmp_path):
    writer = JournalWriter(tmp_path / "Pods")
    writer.start({"version": "test"})
    writer.record_phase(PhaseResult(InstallPhase.ANALYZE, PhaseStatus.SUCCESS))

    assert not journal_directory(tmp_path / "Pods").exists()

    path = writer.materialize()
    writer.record_package("Kit", "installed", revision="abc")
    writer.record_outcome("success")
    writer.close()

    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [line["type"] for line in lines] == ["run", "phase", "package", "outcome"]
    journal = load_last_run(tmp_path / "Pods")
    assert journal.metadata["version"] == "test"
    assert journal.succeeded
    assert [event.as_dict()["type"] for event in journal.iter_events()] == ["phase", "package"]


def test_closed_unmaterialized_journal_writes_nothing(tmp_path):
    writer = JournalWriter(tmp_path / "Pods")
    writer.start({})
    writer.record_outcome("failed", phase="registry")
    writer.close()

    assert load_last_run(tmp_path / "Pods") is None


def test_load_last_run_picks_newest_and_reports_failure(tmp_path):
    directory = journal_directory(tmp_path)
    directory.mkdir(parents=True)
    failed = PhaseResult(InstallPhase.INSTALL_PACKAGES, PhaseStatus.FAILED, error=RuntimeError("boom"))
    (directory / "20240101T000000000000Z.jsonl").write_text(
        json.dumps({"type": "outcome", "status": "success"}) + "\n", encoding="utf-8"
    )
    (directory / "20250101T000000000000Z.jsonl").write_text(
        "\n".join(
            [
                json.dumps({"type": "run", "version": "new"}),
                json.dumps({"type": "phase", **failed.as_dict()}),
                "{not json",
            ]
        )
        + "\n",
        encoding="utf-8",
    )

    journal = load_last_run(tmp_path)

    assert journal.metadata == {"version": "new"}
    assert not journal.succeeded
    assert journal.failed_phase().phase is InstallPhase.INSTALL_PACKAGES
    assert journal.failed_phase().error_repr == "boom"


def test_installer_records_telemetry(config, make_installer):
    storage = InMemoryTelemetryStorage()
    installer = make_installer(
        config,
        make_resolution({"App": [make_spec("Kit")]}),
        telemetry=TelemetryClient(storage, clock=lambda: 42.0),
    )

    installer.install()

    run = storage.events[0]
    assert isinstance(run, RunTelemetry)
    assert run.packages == 1 and run.jobs == config.jobs
    assert {event.run_id for event in storage.events} == {run.run_id}
    phases = [event for event in storage.events if isinstance(event, PhaseTelemetry)]
    assert phases[0].phase == "analyze" and phases[-1].phase == "integrate"
    assert all(event.failure_code is None for event in phases)
    (package,) = [event for event in storage.events if isinstance(event, PackageTelemetry)]
    assert (package.package, package.status, package.cache_hit) == ("Kit", "installed", False)
    assert package.timestamp == 42.0


def test_failed_phase_telemetry_carries_failure_code(config, make_installer, tmp_path):
    storage = InMemoryTelemetryStorage()
    missing = tmp_path / "missing"
    resolution = make_resolution({"App": [make_spec("Ghost", local_path=missing, source={"path": str(missing)})]})
    installer = make_installer(config, resolution, telemetry=TelemetryClient(storage))

    with pytest.raises(ResolutionError):
        installer.install()

    (failed,) = [event for event in storage.events if isinstance(event, PhaseTelemetry) and event.status == "failed"]
    assert failed.phase == "registry"
    assert failed.failure_code == "registry:ResolutionError"


def test_failed_fetch_is_recorded_per_package(config, make_installer):
    storage = InMemoryTelemetryStorage()
    installer = make_installer(
        config.with_overrides(continue_on_failure=True),
        make_resolution({"App": [make_spec("Broken"), make_spec("Kit")]}),
        fetcher=FakeFetcher(fail={"Broken"}),
        telemetry=TelemetryClient(storage),
    )

    with pytest.raises(AggregateFetchError):
        installer.install()

    outcomes = {event.package: event for event in storage.events if isinstance(event, PackageTelemetry)}
    assert outcomes["Broken"].failure_code == "install-packages:FetchError"
    assert outcomes["Kit"].failure_code is None


def test_records_before_a_run_are_dropped():
    storage = InMemoryTelemetryStorage()
    client = TelemetryClient(storage)

    client.phase_finished("analyze", "success", 0.1)
    client.package_finished("Kit", "installed")

    assert storage.events == []


def test_jsonl_storage_flushes_and_reads_back(tmp_path):
    storage = JsonlTelemetryStorage(tmp_path / "telemetry.jsonl")
    client = TelemetryClient(storage)
    client.start_run(version="1.0", jobs=2, update_mode=True)
    client.package_finished("Kit", "installed", cache_hit=True, revision="abc")

    assert not storage.path.exists()
    client.flush()

    run, package = storage.bootstrap()
    assert isinstance(run, RunTelemetry)
    assert (run.jobs, run.update_mode) == (2, True)
    assert isinstance(package, PackageTelemetry)
    assert package.run_id == run.run_id
    assert (package.cache_hit, package.revision) == (True, "abc")


def test_jsonl_storage_skips_unknown_records(tmp_path):
    path = tmp_path / "telemetry.jsonl"
    path.write_text(
        "\n".join(
            [
                json.dumps({"type": "environment", "run_id": "x"}),
                json.dumps({"type": "phase"}),
                json.dumps(PhaseTelemetry("x", phase="analyze", status="success").to_dict()),
            ]
        )
        + "\n",
        encoding="utf-8",
    )

    (event,) = JsonlTelemetryStorage(path).bootstrap()
    assert event.type is TelemetryEventType.PHASE
    assert event.phase == "analyze"


def test_http_storage_failure_is_not_fatal():
    class FailingSession:
        def __init__(self):
            self.posts = []

        def post(self, url, json, timeout):
            self.posts.append(json)
            raise requests.ConnectionError("offline")

    session = FailingSession()
    storage = HttpTelemetryStorage("https://telemetry.example.com", session=session)
    client = TelemetryClient(storage)
    client.start_run(version="1.0", jobs=1, update_mode=False)
    client.phase_finished("analyze", "failed", 0.5, error=ValueError("bad"))

    client.flush()
    client.flush()

    assert len(session.posts) == 1
    assert [record["type"] for record in session.posts[0]] == ["run", "phase"]
    assert session.posts[0][1]["failure_code"] == "analyze:ValueError"


def test_telemetry_is_off_by_default(tmp_path, monkeypatch):
    monkeypatch.delenv("PODYARD_TELEMETRY", raising=False)
    monkeypatch.delenv("PODYARD_TELEMETRY_URL", raising=False)

    assert isinstance(telemetry_from_environment(tmp_path), NullTelemetryClient)

    monkeypatch.setenv("PODYARD_TELEMETRY", "1")
    client = telemetry_from_environment(tmp_path)
    assert isinstance(client, TelemetryClient)
    assert client.storage.path == tmp_path / "telemetry.jsonl"
