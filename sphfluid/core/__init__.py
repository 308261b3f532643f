"""Core solver components: configuration, particles, kernels, neighbor grid and integration."""

from .backend import Backend, auto_select_backend, dispatch, list_backends, resolve_backend
from .bitonic_sort import bitonic_sort_numba, bitonic_sort_vectorized, next_power_of_two
from .buffers import BufferArena, BufferHandle
from .cell_ranges import EMPTY_CELL, build_cell_ranges_numba, build_cell_ranges_vectorized
from .config import SimulationConfig
from .integrator import integrate_numba, integrate_vectorized
from .kernel_vectorized import KernelConstants, SPHKernels
from .particles import ParticleArrays, ParticleType
from .sampler import generate_boundary_shell, generate_particles
from .spatial_grid import GridGeometry, SpatialHashGrid
from .status import (
    BackendUnavailableError,
    CapacityError,
    ConfigurationError,
    SetupResult,
    SetupStatus,
    SimulationError,
)

__all__ = [
    'Backend',
    'auto_select_backend',
    'dispatch',
    'list_backends',
    'resolve_backend',
    'bitonic_sort_numba',
    'bitonic_sort_vectorized',
    'next_power_of_two',
    'BufferArena',
    'BufferHandle',
    'EMPTY_CELL',
    'build_cell_ranges_numba',
    'build_cell_ranges_vectorized',
    'SimulationConfig',
    'integrate_numba',
    'integrate_vectorized',
    'KernelConstants',
    'SPHKernels',
    'ParticleArrays',
    'ParticleType',
    'generate_boundary_shell',
    'generate_particles',
    'GridGeometry',
    'SpatialHashGrid',
    'BackendUnavailableError',
    'CapacityError',
    'ConfigurationError',
    'SetupResult',
    'SetupStatus',
    'SimulationError',
]
