from pathlib import Path

import pytest
import yaml

from conftest import make_resolution, make_spec
from podyard.config import InstallConfig, Recipe, RecipeLoader, parse_bool, parse_int
from podyard.install import InstallPhase, PhaseStatus


def _write(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_parse_bool_is_strict():
    assert parse_bool("false", "config.clean") is False
    assert parse_bool("Yes", "config.clean") is True
    assert parse_bool(0, "config.clean") is False
    with pytest.raises(ValueError) as excinfo:
        parse_bool("maybe", "config.clean")
    assert "config.clean" in str(excinfo.value)


def test_parse_int_rejects_bools_and_minimum():
    assert parse_int("4", "config.jobs", minimum=1) == 4
    with pytest.raises(ValueError):
        parse_int(True, "config.jobs")
    with pytest.raises(ValueError) as excinfo:
        parse_int(0, "config.jobs", minimum=1)
    assert ">= 1" in str(excinfo.value)


def test_defaults_without_recipe_file(tmp_path, monkeypatch):
    monkeypatch.delenv("PODYARD_CACHE", raising=False)
    monkeypatch.chdir(tmp_path)

    recipe = RecipeLoader(project_root=tmp_path).load(None)
    config = InstallConfig.from_recipe(tmp_path, recipe)

    assert recipe.name == "default"
    assert config.sandbox_root == tmp_path.resolve() / "Pods"
    assert config.lockfile_path == tmp_path.resolve() / "podyard.lock"
    assert config.clean is True
    assert config.jobs == 1
    assert config.cache_root is None


def test_recipe_extends_and_overrides(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write(tmp_path / ".podyard" / "recipes" / "base.yml", {"config": {"jobs": 2, "clean": "false"}})
    _write(
        tmp_path / "podyard.yml",
        {
            "name": "ci",
            "extends": ["base"],
            "config": {"generate_docs": True},
            "phases": {"integrate": {"skip": True}},
        },
    )

    recipe = RecipeLoader(project_root=tmp_path).load(None, overrides={"jobs": 6})
    config = InstallConfig.from_recipe(tmp_path, recipe)

    assert recipe.name == "ci"
    assert config.jobs == 6
    assert config.clean is False
    assert config.generate_docs is True
    assert recipe.phase_config(InstallPhase.INTEGRATE) == {"skip": True}
    assert recipe.phase_config("analyze") == {}


def test_circular_extends_is_rejected(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write(tmp_path / "a.yml", {"extends": "b"})
    _write(tmp_path / "b.yml", {"extends": "a"})

    with pytest.raises(RuntimeError) as excinfo:
        RecipeLoader(project_root=tmp_path).load("a")

    assert "Circular" in str(excinfo.value)


def test_cache_root_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("PODYARD_CACHE", str(tmp_path / "shared-cache"))

    config = InstallConfig.from_mapping(tmp_path, {})

    assert config.cache_root == tmp_path / "shared-cache"
    assert config.source_cache_root == tmp_path / "shared-cache" / "sources"


def test_recipe_can_skip_integration(config, make_installer):
    recipe = Recipe(name="no-integrate", data={"phases": {"integrate": {"skip": True}}})
    installer = make_installer(config, make_resolution({"App": [make_spec("Kit")]}), recipe=recipe)

    report = installer.install()

    assert report.results[-1].phase is InstallPhase.INTEGRATE
    assert report.results[-1].status is PhaseStatus.SKIPPED
    assert report.results[-1].payload == {"reason": "skipped by recipe"}
