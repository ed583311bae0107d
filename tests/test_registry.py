import pytest

from conftest import make_resolution, make_spec
from podyard.errors import ResolutionError
from podyard.install import build_registry
from podyard.packages import DownloadState, ExternalPackage, LocalPackage, PathPackage


def test_registry_is_sorted_case_insensitively(sandbox):
    resolution = make_resolution({"default": [make_spec("Zeta"), make_spec("alpha"), make_spec("Beta")]})

    registry, packages = build_registry(resolution.specs_by_target, sandbox)

    assert [package.name for package in packages] == ["alpha", "Beta", "Zeta"]
    (target,) = registry
    assert [package.name for package in registry[target]] == ["Zeta", "alpha", "Beta"]


def test_shared_package_is_materialized_once(sandbox):
    shared = make_spec("Shared")
    resolution = make_resolution({"App": [shared, make_spec("Only")], "Tests": [shared]})

    registry, packages = build_registry(resolution.specs_by_target, sandbox)

    assert [package.name for package in packages] == ["Only", "Shared"]
    app, tests = registry
    assert registry[app][0] is registry[tests][0]
    assert sandbox.package_named("Shared", "ios") is registry[app][0]


def test_constructors_pick_variant(sandbox, tmp_path):
    local_dir = tmp_path / "LocalKit"
    local_dir.mkdir()
    specs = [
        make_spec("Remote"),
        make_spec("Vendor", source={"http": "https://example.com/vendor.zip"}),
        make_spec("LocalKit", local_path=local_dir, source={"path": str(local_dir)}),
    ]
    resolution = make_resolution({"default": specs}, external=["Vendor"])

    _, packages = build_registry(
        resolution.specs_by_target,
        sandbox,
        external_names=resolution.external_source_names,
    )
    by_name = {package.name: package for package in packages}

    assert type(by_name["Remote"]) is LocalPackage
    assert isinstance(by_name["Vendor"], ExternalPackage)
    assert isinstance(by_name["LocalKit"], PathPackage)
    assert by_name["LocalKit"].download_state is DownloadState.FETCHED
    assert by_name["LocalKit"].root == local_dir
    assert by_name["Remote"].download_state is DownloadState.NOT_FETCHED


def test_unsupported_platform_is_compacted(sandbox):
    resolution = make_resolution({"default": [make_spec("MacOnly", platform="osx"), make_spec("Any", platform="any")]})

    registry, packages = build_registry(resolution.specs_by_target, sandbox)

    assert [package.name for package in packages] == ["Any"]
    assert [package.name for package in next(iter(registry.values()))] == ["Any"]


def test_missing_local_path_raises_before_any_package_exists(sandbox, tmp_path):
    missing = tmp_path / "nowhere"
    resolution = make_resolution(
        {"default": [make_spec("Good"), make_spec("Ghost", local_path=missing, source={"path": str(missing)})]}
    )

    with pytest.raises(ResolutionError) as excinfo:
        build_registry(resolution.specs_by_target, sandbox)

    assert excinfo.value.package == "Ghost"
    assert "does not exist" in str(excinfo.value)
    assert sandbox.package_named("Good", "ios") is None
    assert not sandbox.root.exists()


def test_spec_built_for_two_platforms_appears_once_globally(sandbox):
    shared = make_spec("Shared", platform="any")
    resolution = make_resolution({"App": [shared], "Mac": [shared]}, platforms={"Mac": "osx"})

    registry, packages = build_registry(resolution.specs_by_target, sandbox)

    app, mac = registry
    assert registry[app][0] is not registry[mac][0]
    assert registry[app][0].root == registry[mac][0].root
    assert packages == [registry[app][0]]
