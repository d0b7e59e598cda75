from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

REPO_ROOT = Path(__file__).resolve().parents[3]


def _project():
    with (REPO_ROOT / "pyproject.toml").open("rb") as fh:
        return tomllib.load(fh)


def test_project_metadata_has_no_long_description_file():
    project = _project()["project"]
    assert "readme" not in project
    assert project["name"] == "wuheadtas"


def test_declared_packages_exist():
    packages = _project()["tool"]["setuptools"]["packages"]["find"]["include"]
    for pattern in packages:
        assert (REPO_ROOT / "backend" / pattern.rstrip("*")).is_dir(), pattern
