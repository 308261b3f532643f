"""
Numba-optimized density computation for SPH.

One parallel iteration per query point, each walking the 27 grid cells
around its own cell and writing only its own density slot.
"""

import numpy as np
import numba as nb

from ..core.kernel_numba import cell_coords, poly6_kernel
from ..core.kernel_vectorized import KernelConstants
from ..core.particles import ParticleArrays
from ..core.spatial_grid import SpatialHashGrid


@nb.njit(parallel=True, fastmath=True, cache=True)
def density_at_points_numba(points: np.ndarray, positions: np.ndarray, mass: np.ndarray,
                            particle_type: np.ndarray, fluid_only: bool,
                            sorted_indices: np.ndarray, cell_start: np.ndarray,
                            cell_end: np.ndarray, ox: float, oy: float, oz: float,
                            cell_size: float, gx: int, gy: int, gz: int,
                            h2: float, poly6: float, out: np.ndarray):
    """Sum mass_j * Poly6(|p_j - x|²) around every query point x."""
    for q in nb.prange(points.shape[0]):
        px = points[q, 0]
        py = points[q, 1]
        pz = points[q, 2]
        cx, cy, cz, _ = cell_coords(px, py, pz, ox, oy, oz, cell_size, gx, gy, gz)

        rho = 0.0
        for dz in range(-1, 2):
            nz = cz + dz
            if nz < 0 or nz >= gz:
                continue
            for dy in range(-1, 2):
                ny = cy + dy
                if ny < 0 or ny >= gy:
                    continue
                for dx in range(-1, 2):
                    nx = cx + dx
                    if nx < 0 or nx >= gx:
                        continue
                    cell = (nz * gy + ny) * gx + nx
                    start = cell_start[cell]
                    if start == 0xFFFFFFFF:
                        continue
                    for s in range(int(start), int(cell_end[cell])):
                        j = sorted_indices[s]
                        if fluid_only and particle_type[j] != 0:  # 0 is FLUID
                            continue
                        rx = positions[j, 0] - px
                        ry = positions[j, 1] - py
                        rz = positions[j, 2] - pz
                        r2 = rx * rx + ry * ry + rz * rz
                        rho += mass[j] * poly6_kernel(r2, h2, poly6)
        out[q] = rho


@nb.njit(parallel=True, fastmath=True, cache=True)
def apply_density_floor_numba(density: np.ndarray, epsilon: float, rest_density: float):
    for i in nb.prange(density.shape[0]):
        if density[i] < epsilon:
            density[i] = rest_density


def _grid_args(grid: SpatialHashGrid):
    ox, oy, oz = grid.geometry.origin
    gx, gy, gz = grid.geometry.dims
    return (grid.sorted_indices, grid.cell_start, grid.cell_end,
            ox, oy, oz, grid.geometry.cell_size, gx, gy, gz)


def compute_density_numba_wrapper(particles: ParticleArrays, grid: SpatialHashGrid,
                                  constants: KernelConstants, rest_density: float,
                                  density_epsilon: float = 1e-4):
    """Density of every particle (fluid and boundary) from the grid."""
    density_at_points_numba(particles.position, particles.position, particles.mass,
                            particles.particle_type, False, *_grid_args(grid),
                            constants.h2, constants.poly6, particles.density)
    apply_density_floor_numba(particles.density, density_epsilon, rest_density)


def sample_density_numba_wrapper(points: np.ndarray, particles: ParticleArrays,
                                 grid: SpatialHashGrid, constants: KernelConstants) -> np.ndarray:
    """Fluid-only density at arbitrary query points."""
    points = np.ascontiguousarray(points, dtype=np.float64).reshape(-1, 3)
    out = np.zeros(len(points), dtype=np.float64)
    density_at_points_numba(points, particles.position, particles.mass,
                            particles.particle_type, True, *_grid_args(grid),
                            constants.h2, constants.poly6, out)
    return out

