from __future__ import annotations

import sys
from pathlib import Path
import pytest

from callspec_core.engines import Sampler
from callspec_core.spec import Subcase


@pytest.fixture(scope="session")
def repo_root() -> Path:
    # tests/ -> repo root
    return Path(__file__).resolve().parents[1]


@pytest.fixture(scope="session")
def examples_dir(repo_root: Path) -> Path:
    return repo_root / "examples"


@pytest.fixture(scope="session")
def echo_contracts_path(examples_dir: Path) -> Path:
    p = examples_dir / "echo_contracts.py"
    assert p.exists(), f"Missing example spec file: {p}"
    return p


@pytest.fixture(scope="session")
def broken_contracts_path(examples_dir: Path) -> Path:
    p = examples_dir / "broken_contracts.py"
    assert p.exists(), f"Missing example spec file: {p}"
    return p


@pytest.fixture
def sampler() -> Sampler:
    # fresh exclusion store per test
    return Sampler()


def python_subcase(code: str, *args: str, **kwargs) -> Subcase:
    """A Subcase that runs `python -c code args...`."""
    values = kwargs.pop("values", {})
    return Subcase(
        spec_name=kwargs.pop("spec_name", "py"),
        index=kwargs.pop("index", 0),
        seed=0,
        argv=(sys.executable, "-c", code, *args),
        values=values,
        **kwargs,
    )
