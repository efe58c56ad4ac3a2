from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

PYPROJECT = Path(__file__).resolve().parents[1] / "pyproject.toml"


def test_install_exposes_only_the_package_and_console_script():
    with PYPROJECT.open("rb") as fh:
        project = tomllib.load(fh)

    assert project["tool"]["setuptools"]["packages"] == ["entry_timing"]
    assert "py-modules" not in project["tool"]["setuptools"]
    assert project["project"]["scripts"]["entry-timing"] == "entry_timing.orchestrator:main"
