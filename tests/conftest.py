"""Shared pytest fixtures for the nudo test suite."""

from __future__ import annotations

import pytest

from nudo.config import AnalysisConfig
from tests.helpers import SUBTRACT


@pytest.fixture
def config():
    """Analysis config with a generous timeout for slow CI machines."""
    return AnalysisConfig(timeout=20.0, jobs=2)


@pytest.fixture
def tmp_project(tmp_path):
    """A project tree with a nudo.toml, one annotated and one plain file."""
    (tmp_path / "nudo.toml").write_text(
        "[analysis]\ntimeout = 20\njobs = 2\n"
        "[build]\nexclude = [\"**/vendor/**\"]\n"
    )
    src = tmp_path / "src"
    src.mkdir()
    (src / "calc.py").write_text(SUBTRACT)
    (src / "plain.py").write_text("def f(x):\n    return x\n")
    vendor = tmp_path / "vendor"
    vendor.mkdir()
    (vendor / "lib.py").write_text(SUBTRACT)
    return tmp_path
