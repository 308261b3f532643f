"""
Particle data structure using the Structure-of-Arrays (SoA) pattern.

This design is optimized for:
- SIMD operations on CPU
- Per-stage parallel loops that own disjoint output slots
- Cheap read-only export of the raw buffers after each tick
"""

import enum
from dataclasses import dataclass
from typing import Optional

import numpy as np


class ParticleType(enum.IntEnum):
    """Role of a particle in the solver."""
    FLUID = 0      # Integrated every tick
    BOUNDARY = 1   # Static, only repels fluid near walls


@dataclass
class ParticleArrays:
    """Structure of Arrays holding the whole particle state.

    Vector quantities are stored as contiguous (N, 3) float32 blocks,
    scalars as (N,) float32. Boundary particles keep zero velocity and
    are never integrated.
    """
    # Primary state (N particles)
    position: np.ndarray        # shape: (N, 3) float32
    velocity: np.ndarray        # shape: (N, 3) float32
    acceleration: np.ndarray    # shape: (N, 3) float32

    # Derived every tick
    density: np.ndarray         # shape: (N,) float32
    pressure: np.ndarray        # shape: (N,) float32

    # Constant per run
    mass: np.ndarray            # shape: (N,) float32
    particle_type: np.ndarray   # shape: (N,) int32

    @staticmethod
    def allocate(n_particles: int) -> 'ParticleArrays':
        """Pre-allocate zeroed arrays for n particles (all fluid)."""
        return ParticleArrays(
            position=np.zeros((n_particles, 3), dtype=np.float32),
            velocity=np.zeros((n_particles, 3), dtype=np.float32),
            acceleration=np.zeros((n_particles, 3), dtype=np.float32),
            density=np.zeros(n_particles, dtype=np.float32),
            pressure=np.zeros(n_particles, dtype=np.float32),
            mass=np.zeros(n_particles, dtype=np.float32),
            particle_type=np.full(n_particles, ParticleType.FLUID, dtype=np.int32),
        )

    @staticmethod
    def from_positions(fluid: np.ndarray, boundary: Optional[np.ndarray] = None,
                       mass: float = 0.02) -> 'ParticleArrays':
        """Build a store with boundary particles first, then fluid.

        Args:
            fluid: Fluid positions, shape (F, 3)
            boundary: Boundary positions, shape (B, 3), optional
            mass: Mass assigned to every particle

        Returns:
            ParticleArrays with N = B + F particles
        """
        fluid = np.asarray(fluid, dtype=np.float32).reshape(-1, 3)
        if boundary is None:
            boundary = np.zeros((0, 3), dtype=np.float32)
        boundary = np.asarray(boundary, dtype=np.float32).reshape(-1, 3)

        n_boundary = len(boundary)
        particles = ParticleArrays.allocate(n_boundary + len(fluid))
        particles.position[:n_boundary] = boundary
        particles.position[n_boundary:] = fluid
        particles.particle_type[:n_boundary] = ParticleType.BOUNDARY
        particles.mass[:] = mass
        return particles

    def __len__(self) -> int:
        return len(self.position)

    @property
    def n_fluid(self) -> int:
        return int(np.count_nonzero(self.particle_type == ParticleType.FLUID))

    @property
    def n_boundary(self) -> int:
        return len(self) - self.n_fluid

    def fluid_mask(self) -> np.ndarray:
        return self.particle_type == ParticleType.FLUID

    def fluid_indices(self) -> np.ndarray:
        return np.flatnonzero(self.particle_type == ParticleType.FLUID).astype(np.int64)

    def set_mass(self, mass: float):
        """Assign the (uniform) particle mass."""
        self.mass[:] = mass

    def reset_acceleration(self):
        """Reset acceleration accumulators to zero."""
        self.acceleration[:] = 0.0

    def copy(self) -> 'ParticleArrays':
        return ParticleArrays(
            position=self.position.copy(),
            velocity=self.velocity.copy(),
            acceleration=self.acceleration.copy(),
            density=self.density.copy(),
            pressure=self.pressure.copy(),
            mass=self.mass.copy(),
            particle_type=self.particle_type.copy(),
        )
