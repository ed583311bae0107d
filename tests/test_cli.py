import io

import pytest
import yaml

from podyard.cli import _cli
from podyard.ui import make_console


@pytest.fixture
def output(monkeypatch, tmp_path):
    buffer = io.StringIO()
    monkeypatch.setenv("PODYARD_NO_ANIM", "1")
    monkeypatch.setenv("PODYARD_CACHE", str(tmp_path / "cache"))
    monkeypatch.delenv("PODYARD_TELEMETRY", raising=False)
    monkeypatch.delenv("PODYARD_TELEMETRY_URL", raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(_cli, "make_console", lambda: make_console(buffer))
    return buffer


def _write_resolution(project):
    local = project / "LocalKit"
    (local / "Classes").mkdir(parents=True)
    (local / "Classes" / "LocalKit.m").write_text("", encoding="utf-8")
    path = project / "podyard.resolved.yml"
    path.write_text(
        yaml.safe_dump(
            {
                "platform": "ios",
                "packages": {"LocalKit": {"version": "0.1.0", "path": "LocalKit", "source_files": ["Classes"]}},
                "targets": [{"name": "App", "packages": ["LocalKit"]}],
            }
        ),
        encoding="utf-8",
    )
    return path


def test_install_then_last_run(tmp_path, output):
    project = tmp_path / "project"
    project.mkdir()
    _write_resolution(project)

    assert _cli.main(["install", "--project-root", str(project), "--no-integrate"]) == 0

    assert (project / "podyard.lock").is_file()
    assert (project / "Pods" / "Manifest.lock").read_bytes() == (project / "podyard.lock").read_bytes()
    assert "Pod installation complete! 1 package(s) installed." in output.getvalue()

    output.seek(0)
    output.truncate()
    assert _cli.main(["install", "--project-root", str(project), "--no-integrate"]) == 0
    assert "Pod installation complete! 0 package(s) installed." in output.getvalue()

    output.seek(0)
    output.truncate()
    assert _cli.main(["last-run", "--project-root", str(project)]) == 0
    text = output.getvalue()
    assert "install-packages" in text
    assert "LocalKit" in text


def test_missing_resolution_exits_with_error(tmp_path, output):
    project = tmp_path / "project"
    project.mkdir()

    assert _cli.main(["install", "--project-root", str(project)]) == 1

    assert "Resolution file not found" in output.getvalue()
    assert not (project / "Pods").exists()


def test_last_run_without_history(tmp_path, output):
    assert _cli.main(["last-run", "--project-root", str(tmp_path)]) == 1
    assert "No install runs recorded" in output.getvalue()


def test_update_and_flags_become_overrides():
    args = _cli._parse_args(["update", "--no-clean", "--jobs", "3", "--continue-on-failure"])

    assert _cli._config_overrides(args) == {
        "update_mode": True,
        "clean": False,
        "jobs": 3,
        "continue_on_failure": True,
    }


def test_bare_invocation_defaults_to_install():
    args = _cli._parse_args([])

    assert args.command == "install"
    assert _cli._config_overrides(args) == {}
