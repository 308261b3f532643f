"""Shared fixtures for the fluid solver tests."""
import sys
from pathlib import Path
from typing import Any

import numpy as np
import pytest


def pytest_configure(config):
    """Make the workspace root importable when running from a checkout."""
    workspace_root = Path(__file__).parent.parent.parent
    if str(workspace_root) not in sys.path:
        sys.path.insert(0, str(workspace_root))


def pytest_ignore_collect(collection_path: Path, config: Any) -> bool:
    """Skip paths that cannot be stat'ed (broken symlinks in mounted checkouts)."""
    try:
        _ = collection_path.is_dir()
    except OSError:
        return True
    return False


@pytest.fixture(params=['cpu', 'numba'])
def backend(request):
    """Parametrize tests over both backends."""
    return request.param


@pytest.fixture
def small_config():
    """Half-size tank with a few hundred lattice particles and two wall layers."""
    from sphfluid.core.config import SimulationConfig

    return SimulationConfig(
        target_particle_count=400,
        spawn_volume_size=(0.5, 0.5, 0.5),
        sampler="lattice",
        boundary_layers=2,
        rest_density=100.0,
        backend="cpu",
    )


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
