import threading
from pathlib import Path
from typing import Any, Iterable, Mapping

import pytest

from podyard.config import InstallConfig
from podyard.errors import FetchError
from podyard.fetch import FetchResult
from podyard.install import InstallSummary, Installer
from podyard.resolution import PackageSpec, ProjectDefinition, Resolution, TargetDefinition
from podyard.sandbox import Sandbox
from podyard.ui import InstallUI


def write_package_tree(root: Path, name: str) -> Path:
    """Lay out a package checkout: sources, a license and files no spec uses."""

    classes = root / "Classes"
    classes.mkdir(parents=True, exist_ok=True)
    (classes / f"{name}.h").write_text(f"@interface {name}\n@end\n", encoding="utf-8")
    (classes / f"{name}.m").write_text(f'#import "{name}.h"\n', encoding="utf-8")
    (root / "LICENSE").write_text(f"MIT License for {name}\n", encoding="utf-8")
    (root / "README.md").write_text("readme\n", encoding="utf-8")
    (root / "Examples").mkdir(exist_ok=True)
    (root / "Examples" / "Demo.m").write_text("int main(void) { return 0; }\n", encoding="utf-8")
    return root


class FakeFetcher:
    """In-process fetcher writing a package tree instead of cloning."""

    def __init__(self, *, fail: Iterable[str] = (), revision: str = "0123abcd") -> None:
        self.fail = set(fail)
        self.revision = revision
        self.calls: list[str] = []
        self.threads: set[str] = set()
        self._lock = threading.Lock()

    def fetch(
        self,
        source: Mapping[str, Any],
        destination: Path,
        *,
        head: bool = False,
        cache_root: Path | None = None,
        max_cache_size_mb: int = 500,
        aggressive_cache: bool = False,
    ) -> FetchResult:
        name = Path(destination).name
        with self._lock:
            self.calls.append(name)
            self.threads.add(threading.current_thread().name)
        if name in self.fail:
            raise FetchError("remote hung up unexpectedly", package=name)
        write_package_tree(Path(destination), name)
        checkout = None
        if head:
            checkout = {"git": source.get("git"), "commit": self.revision}
        return FetchResult(resolved_revision=self.revision, checkout_options=checkout)


def make_spec(name: str, version: str = "1.0.0", **overrides: Any) -> PackageSpec:
    data: dict[str, Any] = {
        "name": name,
        "version": version,
        "source": {"git": f"https://example.com/{name}.git", "tag": version},
        "source_files": ("Classes",),
        "license": "MIT",
    }
    data.update(overrides)
    return PackageSpec(**data)


def make_resolution(
    targets: Mapping[str, Iterable[PackageSpec]],
    *,
    platform: str = "ios",
    platforms: Mapping[str, str] | None = None,
    external: Iterable[str] = (),
    pre_install=None,
    post_install=None,
) -> Resolution:
    specs_by_target: dict[TargetDefinition, list[PackageSpec]] = {}
    for name, specs in targets.items():
        specs = list(specs)
        target = TargetDefinition(
            name=name,
            platform=(platforms or {}).get(name, platform),
            dependencies=tuple(spec.name for spec in specs),
        )
        specs_by_target[target] = specs
    project = ProjectDefinition(
        targets=tuple(specs_by_target),
        pre_install=pre_install,
        post_install=post_install,
    )
    return Resolution(
        project=project,
        specs_by_target=specs_by_target,
        external_source_names=frozenset(external),
    )


@pytest.fixture
def project_dir(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def config(project_dir, tmp_path):
    return InstallConfig(project_root=project_dir, cache_root=tmp_path / "cache")


@pytest.fixture
def sandbox(config):
    return Sandbox(config.sandbox_root)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def quiet_ui():
    return InstallUI(quiet=True)


@pytest.fixture
def make_installer(fetcher, quiet_ui):
    def _factory(config, resolution, **kwargs):
        kwargs.setdefault("fetcher", fetcher)
        kwargs.setdefault("ui", quiet_ui)
        kwargs.setdefault("summary", InstallSummary())
        return Installer(config, resolution, **kwargs)

    return _factory
