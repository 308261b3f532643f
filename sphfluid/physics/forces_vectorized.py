"""
Vectorized pressure and force computation for SPH.

Includes:
- Tait equation of state, clamped to non-negative pressure
- Symmetric pressure gradient term
- Müller viscosity term
- External forces (gravity)

Results are accelerations: the pressure and viscosity terms already
divide by density. Only fluid particles receive them; boundary
particles act as neighbors but never move.
"""

import numpy as np

from ..core.kernel_vectorized import KernelConstants, SPHKernels
from ..core.particles import ParticleArrays, ParticleType
from ..core.spatial_grid import SpatialHashGrid
from .density_vectorized import NeighborPairs, find_particle_pairs_grid


def tait_equation_of_state(density: np.ndarray, rest_density: float,
                           gas_constant: float, exponent: float) -> np.ndarray:
    """p = B((ρ/ρ0)^γ - 1), clamped to >= 0.

    Negative pressures would pull particles together, so they are cut.
    """
    ratio = np.asarray(density, dtype=np.float64) / rest_density
    pressure = gas_constant * (np.power(ratio, exponent) - 1.0)
    return np.maximum(pressure, 0.0)


def compute_pressure_vectorized(particles: ParticleArrays, rest_density: float,
                                gas_constant: float, exponent: float):
    """Pressure pass for every particle."""
    particles.pressure[:] = tait_equation_of_state(particles.density, rest_density,
                                                   gas_constant, exponent)


def pressure_pair_acceleration(r_vec: np.ndarray, mass_j: np.ndarray,
                               pressure_i: np.ndarray, density_i: np.ndarray,
                               pressure_j: np.ndarray, density_j: np.ndarray,
                               kernels: SPHKernels) -> np.ndarray:
    """m_j (p_i/ρ_i² + p_j/ρ_j²) SpikyGrad(pos_j - pos_i) for each pair.

    Swapping i and j flips r_vec and so the sign: the term is
    antisymmetric for equal masses.
    """
    term = pressure_i / (density_i * density_i) + pressure_j / (density_j * density_j)
    return (mass_j * term)[:, np.newaxis] * kernels.spiky_gradient(r_vec)


def viscosity_pair_acceleration(r2: np.ndarray, mass_j: np.ndarray,
                                velocity_i: np.ndarray, velocity_j: np.ndarray,
                                density_i: np.ndarray, density_j: np.ndarray,
                                viscosity_mu: float, kernels: SPHKernels) -> np.ndarray:
    """μ m_j (v_j - v_i) / (ρ_i ρ_j) ViscLap(r) for each pair."""
    lap = kernels.viscosity_laplacian(np.sqrt(r2))
    scale = viscosity_mu * mass_j * lap / (density_i * density_j)
    return scale[:, np.newaxis] * (velocity_j - velocity_i)


def compute_forces_from_pairs(particles: ParticleArrays, pairs: NeighborPairs,
                              constants: KernelConstants, viscosity_mu: float,
                              gravity: np.ndarray):
    """Force pass given a particle/particle pair list.

    Self pairs are skipped. Pairs whose target is a boundary particle
    are dropped, so walls push on fluid but receive nothing back.
    """
    kernels = SPHKernels(constants)
    keep = (pairs.i != pairs.j) & (particles.particle_type[pairs.i] == ParticleType.FLUID)
    i, j = pairs.i[keep], pairs.j[keep]
    r_vec, r2 = pairs.r_vec[keep], pairs.r2[keep]

    density = particles.density.astype(np.float64)
    pressure = particles.pressure.astype(np.float64)
    velocity = particles.velocity.astype(np.float64)
    mass_j = particles.mass[j].astype(np.float64)

    contrib = pressure_pair_acceleration(r_vec, mass_j, pressure[i], density[i],
                                         pressure[j], density[j], kernels)
    contrib += viscosity_pair_acceleration(r2, mass_j, velocity[i], velocity[j],
                                           density[i], density[j], viscosity_mu, kernels)

    n = len(particles)
    accel = np.zeros((n, 3), dtype=np.float64)
    for axis in range(3):
        accel[:, axis] = np.bincount(i, weights=contrib[:, axis], minlength=n)

    fluid = particles.fluid_mask()
    accel[fluid] += np.asarray(gravity, dtype=np.float64)
    accel[~fluid] = 0.0
    particles.acceleration[:] = accel


def compute_forces_grid_vectorized(particles: ParticleArrays, grid: SpatialHashGrid,
                                   constants: KernelConstants, viscosity_mu: float,
                                   gravity: np.ndarray):
    """Force pass using the grid's cell ranges for the neighbor search."""
    pairs = find_particle_pairs_grid(particles, grid, constants.h)
    compute_forces_from_pairs(particles, pairs, constants, viscosity_mu, gravity)
