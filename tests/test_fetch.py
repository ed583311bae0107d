import os
import subprocess
import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from podyard.errors import FetchError
from podyard.fetch import CommandRunner, SourceCache, SourceFetcher, cache_key, hint_for_command
from podyard.fetch import commands
from podyard.install import InstallSummary


def _tree(root, name="Kit"):
    (root / "Classes").mkdir(parents=True, exist_ok=True)
    (root / "Classes" / f"{name}.m").write_text(name, encoding="utf-8")
    return root


def test_cache_key_depends_on_source_and_revision():
    source = {"git": "https://example.com/Kit.git", "tag": "1.0"}

    assert cache_key(source, "1.0") == cache_key(dict(reversed(list(source.items()))), "1.0")
    assert cache_key(source, "1.0") != cache_key(source, "1.1")


def test_cache_store_and_restore(tmp_path):
    cache = SourceCache(tmp_path / "cache")
    source = {"git": "https://example.com/Kit.git", "commit": "abc"}
    cache.store(source, "abc", _tree(tmp_path / "tree"))

    entry = cache.lookup(source, "abc")
    assert entry is not None
    cache.restore(entry, tmp_path / "restored")

    assert (tmp_path / "restored" / "Classes" / "Kit.m").read_text(encoding="utf-8") == "Kit"
    assert cache.lookup(source, "def") is None


def test_cache_evicts_least_recently_used(tmp_path):
    cache = SourceCache(tmp_path / "cache", max_size_mb=1)
    entries = []
    for index in range(3):
        tree = tmp_path / f"tree{index}"
        tree.mkdir()
        (tree / "blob").write_bytes(os.urandom(400 * 1024))
        entry = cache.store({"http": f"https://example.com/{index}.zip"}, None, tree)
        past = time.time() - 100 + index
        os.utime(entry, (past, past))
        entries.append(entry)

    cache.prune()

    assert not entries[0].exists()
    assert entries[1].exists() and entries[2].exists()
    assert cache.size() <= cache.max_bytes


def test_disabled_cache_stores_nothing(tmp_path):
    cache = SourceCache(tmp_path / "cache", max_size_mb=0)

    assert cache.store({"git": "x"}, None, _tree(tmp_path / "tree")) is None
    assert cache.lookup({"git": "x"}) is None


def test_path_source_is_copied_through_staging(tmp_path):
    origin = _tree(tmp_path / "origin")
    destination = tmp_path / "Pods" / "Kit"
    destination.mkdir(parents=True)
    (destination / "stale.txt").write_text("old", encoding="utf-8")

    result = SourceFetcher(CommandRunner()).fetch({"path": str(origin)}, destination)

    assert (destination / "Classes" / "Kit.m").is_file()
    assert not (destination / "stale.txt").exists()
    assert result.checkout_options is None
    assert [path.name for path in destination.parent.iterdir()] == ["Kit"]


def test_failed_fetch_leaves_destination_untouched(tmp_path):
    destination = tmp_path / "Pods" / "Kit"
    destination.mkdir(parents=True)
    (destination / "keep.txt").write_text("keep", encoding="utf-8")

    with pytest.raises(FetchError) as excinfo:
        SourceFetcher(CommandRunner()).fetch({"path": str(tmp_path / "missing")}, destination)

    assert "does not exist" in str(excinfo.value)
    assert (destination / "keep.txt").is_file()
    assert [path.name for path in destination.parent.iterdir()] == ["Kit"]


def test_unknown_source_is_rejected(tmp_path):
    with pytest.raises(FetchError) as excinfo:
        SourceFetcher(CommandRunner()).fetch({"svn": "https://example.com/repo"}, tmp_path / "Kit")

    assert "Unsupported source" in str(excinfo.value)


def test_aggressive_cache_skips_the_network(tmp_path):
    cache_root = tmp_path / "cache"
    source = {"git": "https://example.com/Kit.git", "tag": "1.0"}
    SourceCache(cache_root).store(source, "1.0", _tree(tmp_path / "tree"))

    class NoRunner:
        def run(self, *args, **kwargs):
            raise AssertionError("network used")

        retry = run

    result = SourceFetcher(NoRunner()).fetch(
        source,
        tmp_path / "Pods" / "Kit",
        cache_root=cache_root,
        aggressive_cache=True,
    )

    assert result.from_cache
    assert (tmp_path / "Pods" / "Kit" / "Classes" / "Kit.m").is_file()


def test_head_fetch_reports_the_resolved_commit(tmp_path):
    calls = []

    class RecordingRunner:
        def retry(self, cmd, **kwargs):
            calls.append(list(cmd))
            staging = cmd[-1]
            _tree(Path(staging))
            return SimpleNamespace(stdout="", returncode=0)

        def run(self, cmd, **kwargs):
            calls.append(list(cmd))
            return SimpleNamespace(stdout="cafebabe\n", returncode=0)

    source = {"git": "https://example.com/Kit.git", "branch": "main"}
    result = SourceFetcher(RecordingRunner()).fetch(source, tmp_path / "Pods" / "Kit", head=True)

    assert calls[0][:5] == ["git", "clone", "--quiet", "--branch", "main"]
    assert calls[-1] == ["git", "rev-parse", "HEAD"]
    assert result.resolved_revision == "cafebabe"
    assert result.checkout_options == {"git": "https://example.com/Kit.git", "commit": "cafebabe"}


def test_runner_records_failures_with_hint(monkeypatch):
    summary = InstallSummary()

    def fake_run(cmd, **kwargs):
        return SimpleNamespace(returncode=128, stdout="", stderr="fatal: could not resolve host: example.com")

    monkeypatch.setattr(commands.subprocess, "run", fake_run)

    with pytest.raises(subprocess.CalledProcessError):
        CommandRunner(summary).run(["git", "clone", "https://example.com/Kit.git"])

    record = summary.last_command()
    assert record is not None
    assert record.command[0] == "git"
    assert record.exit_code == 128
    assert "connectivity" in (record.hint or "").lower()


def test_retry_gives_up_after_attempts(monkeypatch):
    attempts = []

    def fake_run(cmd, **kwargs):
        attempts.append(cmd)
        return SimpleNamespace(returncode=1, stdout="", stderr="remote: not found")

    monkeypatch.setattr(commands.subprocess, "run", fake_run)
    monkeypatch.setattr(commands.time, "sleep", lambda seconds: None)

    with pytest.raises(subprocess.CalledProcessError):
        CommandRunner().retry(["git", "fetch"], attempts=3)

    assert len(attempts) == 3
    assert "tag, branch or commit" in hint_for_command(["git", "fetch"], 1, "not found")
