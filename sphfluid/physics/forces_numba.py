"""
Numba-optimized pressure and force computation for SPH.

Each fluid particle walks the 27 cells around its own cell and writes
only its own acceleration; boundary particles get zero acceleration.
"""

import numpy as np
import numba as nb

from ..core.kernel_numba import cell_coords, spiky_gradient_factor, viscosity_laplacian
from ..core.kernel_vectorized import KernelConstants
from ..core.particles import ParticleArrays
from ..core.spatial_grid import SpatialHashGrid


@nb.njit(parallel=True, fastmath=True, cache=True)
def compute_pressure_numba(density: np.ndarray, pressure: np.ndarray,
                           rest_density: float, gas_constant: float, exponent: float):
    """Tait equation of state, clamped to >= 0."""
    for i in nb.prange(density.shape[0]):
        p = gas_constant * ((density[i] / rest_density) ** exponent - 1.0)
        pressure[i] = p if p > 0.0 else 0.0


@nb.njit(parallel=True, fastmath=True, cache=True)
def compute_forces_numba(positions: np.ndarray, velocity: np.ndarray, mass: np.ndarray,
                         density: np.ndarray, pressure: np.ndarray,
                         particle_type: np.ndarray, sorted_indices: np.ndarray,
                         cell_start: np.ndarray, cell_end: np.ndarray,
                         ox: float, oy: float, oz: float, cell_size: float,
                         gx: int, gy: int, gz: int,
                         h: float, spiky_grad: float, visc_lap: float,
                         viscosity_mu: float, grav_x: float, grav_y: float, grav_z: float,
                         acceleration: np.ndarray):
    """Pressure + viscosity + gravity acceleration for fluid particles."""
    h2 = h * h
    for i in nb.prange(positions.shape[0]):
        if particle_type[i] != 0:
            acceleration[i, 0] = 0.0
            acceleration[i, 1] = 0.0
            acceleration[i, 2] = 0.0
            continue

        px = positions[i, 0]
        py = positions[i, 1]
        pz = positions[i, 2]
        rho_i = density[i]
        p_term_i = pressure[i] / (rho_i * rho_i)
        cx, cy, cz, _ = cell_coords(px, py, pz, ox, oy, oz, cell_size, gx, gy, gz)

        ax = 0.0
        ay = 0.0
        az = 0.0
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
                        if j == i:
                            continue
                        rx = positions[j, 0] - px
                        ry = positions[j, 1] - py
                        rz = positions[j, 2] - pz
                        r2 = rx * rx + ry * ry + rz * rz
                        if r2 >= h2:
                            continue
                        r = np.sqrt(r2)
                        rho_j = density[j]

                        # Symmetric pressure term
                        p_term = mass[j] * (p_term_i + pressure[j] / (rho_j * rho_j))
                        g = p_term * spiky_gradient_factor(r, h, spiky_grad)
                        ax += g * rx
                        ay += g * ry
                        az += g * rz

                        # Viscosity
                        v = viscosity_mu * mass[j] * viscosity_laplacian(r, h, visc_lap) / (rho_i * rho_j)
                        ax += v * (velocity[j, 0] - velocity[i, 0])
                        ay += v * (velocity[j, 1] - velocity[i, 1])
                        az += v * (velocity[j, 2] - velocity[i, 2])

        acceleration[i, 0] = ax + grav_x
        acceleration[i, 1] = ay + grav_y
        acceleration[i, 2] = az + grav_z


def compute_pressure_numba_wrapper(particles: ParticleArrays, rest_density: float,
                                   gas_constant: float, exponent: float):
    compute_pressure_numba(particles.density, particles.pressure,
                           float(rest_density), float(gas_constant), float(exponent))


def compute_forces_numba_wrapper(particles: ParticleArrays, grid: SpatialHashGrid,
                                 constants: KernelConstants, viscosity_mu: float,
                                 gravity: np.ndarray):
    """Wrapper for the Numba force pass that matches the standard interface."""
    ox, oy, oz = grid.geometry.origin
    gx, gy, gz = grid.geometry.dims
    gravity = np.asarray(gravity, dtype=np.float64)
    compute_forces_numba(particles.position, particles.velocity, particles.mass,
                         particles.density, particles.pressure, particles.particle_type,
                         grid.sorted_indices, grid.cell_start, grid.cell_end,
                         ox, oy, oz, grid.geometry.cell_size, gx, gy, gz,
                         constants.h, constants.spiky_grad, constants.visc_lap,
                         float(viscosity_mu), gravity[0], gravity[1], gravity[2],
                         particles.acceleration)
