"""
Unified API for the solver stages with explicit backend dispatch.

Importing this module registers the CPU (NumPy) and Numba
implementations of every stage. The public functions take the backend
name as an argument, normally ``config.backend``.
"""

from typing import Optional

import numpy as np

from .core.backend import Backend, backend_function, dispatch, for_backend
from .core.bitonic_sort import bitonic_sort_numba, bitonic_sort_vectorized
from .core.cell_ranges import build_cell_ranges_numba, build_cell_ranges_vectorized
from .core.config import SimulationConfig
from .core.integrator import integrate_numba, integrate_vectorized
from .core.kernel_vectorized import KernelConstants
from .core.particles import ParticleArrays
from .core.spatial_grid import SpatialHashGrid, hash_positions_numba, hash_positions_vectorized
from .physics.density_numba import compute_density_numba_wrapper, sample_density_numba_wrapper
from .physics.density_vectorized import compute_density_grid_vectorized, sample_density_vectorized
from .physics.forces_numba import compute_forces_numba_wrapper, compute_pressure_numba_wrapper
from .physics.forces_vectorized import compute_forces_grid_vectorized, compute_pressure_vectorized


# Grid construction stages
backend_function("hash_positions")(for_backend(Backend.CPU)(hash_positions_vectorized))
backend_function("hash_positions")(for_backend(Backend.NUMBA)(hash_positions_numba))
backend_function("sort_hash_entries")(for_backend(Backend.CPU)(bitonic_sort_vectorized))
backend_function("sort_hash_entries")(for_backend(Backend.NUMBA)(bitonic_sort_numba))
backend_function("build_cell_ranges")(for_backend(Backend.CPU)(build_cell_ranges_vectorized))
backend_function("build_cell_ranges")(for_backend(Backend.NUMBA)(build_cell_ranges_numba))


# Register CPU implementations
@backend_function("compute_density")
@for_backend(Backend.CPU)
def _compute_density_cpu(particles: ParticleArrays, grid: SpatialHashGrid,
                         constants: KernelConstants, rest_density: float,
                         density_epsilon: float):
    compute_density_grid_vectorized(particles, grid, constants, rest_density, density_epsilon)


@backend_function("compute_pressure")
@for_backend(Backend.CPU)
def _compute_pressure_cpu(particles: ParticleArrays, rest_density: float,
                          gas_constant: float, exponent: float):
    compute_pressure_vectorized(particles, rest_density, gas_constant, exponent)


@backend_function("compute_forces")
@for_backend(Backend.CPU)
def _compute_forces_cpu(particles: ParticleArrays, grid: SpatialHashGrid,
                        constants: KernelConstants, viscosity_mu: float,
                        gravity: np.ndarray):
    compute_forces_grid_vectorized(particles, grid, constants, viscosity_mu, gravity)


@backend_function("sample_density")
@for_backend(Backend.CPU)
def _sample_density_cpu(points: np.ndarray, particles: ParticleArrays,
                        grid: SpatialHashGrid, constants: KernelConstants) -> np.ndarray:
    return sample_density_vectorized(points, particles, grid, constants)


@backend_function("integrate")
@for_backend(Backend.CPU)
def _integrate_cpu(particles: ParticleArrays, dt: float, clamp: bool,
                   min_bounds: np.ndarray, max_bounds: np.ndarray, damping: float):
    integrate_vectorized(particles, dt, clamp, min_bounds, max_bounds, damping)


# Register Numba implementations
@backend_function("compute_density")
@for_backend(Backend.NUMBA)
def _compute_density_numba(particles: ParticleArrays, grid: SpatialHashGrid,
                           constants: KernelConstants, rest_density: float,
                           density_epsilon: float):
    compute_density_numba_wrapper(particles, grid, constants, rest_density, density_epsilon)


@backend_function("compute_pressure")
@for_backend(Backend.NUMBA)
def _compute_pressure_numba(particles: ParticleArrays, rest_density: float,
                            gas_constant: float, exponent: float):
    compute_pressure_numba_wrapper(particles, rest_density, gas_constant, exponent)


@backend_function("compute_forces")
@for_backend(Backend.NUMBA)
def _compute_forces_numba(particles: ParticleArrays, grid: SpatialHashGrid,
                          constants: KernelConstants, viscosity_mu: float,
                          gravity: np.ndarray):
    compute_forces_numba_wrapper(particles, grid, constants, viscosity_mu, gravity)


@backend_function("sample_density")
@for_backend(Backend.NUMBA)
def _sample_density_numba(points: np.ndarray, particles: ParticleArrays,
                          grid: SpatialHashGrid, constants: KernelConstants) -> np.ndarray:
    return sample_density_numba_wrapper(points, particles, grid, constants)


@backend_function("integrate")
@for_backend(Backend.NUMBA)
def _integrate_numba(particles: ParticleArrays, dt: float, clamp: bool,
                     min_bounds: np.ndarray, max_bounds: np.ndarray, damping: float):
    integrate_numba(particles, dt, clamp, min_bounds, max_bounds, damping)


# Public API
def compute_density(particles: ParticleArrays, grid: SpatialHashGrid,
                    constants: KernelConstants, config: SimulationConfig,
                    backend: Optional[str] = None):
    """Density pass for every particle."""
    dispatch("compute_density", particles, grid, constants, config.rest_density,
             config.density_epsilon, backend=backend or config.backend)


def compute_pressure(particles: ParticleArrays, config: SimulationConfig,
                     backend: Optional[str] = None):
    """Pressure pass (Tait equation of state)."""
    dispatch("compute_pressure", particles, config.rest_density, config.gas_constant,
             config.pressure_exponent, backend=backend or config.backend)


def compute_forces(particles: ParticleArrays, grid: SpatialHashGrid,
                   constants: KernelConstants, config: SimulationConfig,
                   backend: Optional[str] = None):
    """Force pass; writes accelerations of fluid particles."""
    dispatch("compute_forces", particles, grid, constants, config.viscosity_mu,
             config.gravity_vector, backend=backend or config.backend)


def sample_density(points: np.ndarray, particles: ParticleArrays, grid: SpatialHashGrid,
                   constants: KernelConstants, backend: str = "cpu") -> np.ndarray:
    """Fluid density at world points (effector sample query)."""
    return dispatch("sample_density", points, particles, grid, constants, backend=backend)


def integrate(particles: ParticleArrays, dt: float, config: SimulationConfig,
              backend: Optional[str] = None):
    """Advance fluid particles, clamping to the box in "clamp" mode."""
    dispatch("integrate", particles, dt, config.boundary_mode == "clamp",
             config.min_bounds, config.max_bounds, config.boundary_damping,
             backend=backend or config.backend)
