"""
Semi-implicit Euler time integration.

v += a dt, then x += v dt, fluid particles only. In "clamp" boundary
mode each axis is checked against the spawn volume: a particle past a
bound is put back on it and that velocity component is reflected and
damped. The top of the container is open, so y is only checked against
its lower bound. In "particles" mode the wall particles do the work and
positions are left alone.
"""

import numpy as np
import numba as nb

from .particles import ParticleArrays


def integrate_vectorized(particles: ParticleArrays, dt: float, clamp: bool,
                         min_bounds: np.ndarray, max_bounds: np.ndarray,
                         damping: float):
    """Advance fluid particles by one step (NumPy).

    Args:
        particles: Particle store, acceleration already computed
        dt: Time step
        clamp: Apply the box boundary response
        min_bounds: Lower corner of the container
        max_bounds: Upper corner of the container (y ignored)
        damping: Restitution factor for reflected velocity components
    """
    fluid = particles.fluid_indices()
    if len(fluid) == 0:
        return

    vel = particles.velocity[fluid] + particles.acceleration[fluid] * np.float32(dt)
    pos = particles.position[fluid] + vel * np.float32(dt)

    if clamp:
        lo = np.asarray(min_bounds, dtype=np.float32)
        hi = np.asarray(max_bounds, dtype=np.float32)
        for axis in range(3):
            below = pos[:, axis] < lo[axis]
            pos[below, axis] = lo[axis]
            vel[below, axis] *= -damping
            if axis == 1:
                continue
            above = pos[:, axis] > hi[axis]
            pos[above, axis] = hi[axis]
            vel[above, axis] *= -damping

    particles.velocity[fluid] = vel
    particles.position[fluid] = pos


@nb.njit(parallel=True, fastmath=True, cache=True)
def _integrate_numba(position: np.ndarray, velocity: np.ndarray, acceleration: np.ndarray,
                     particle_type: np.ndarray, dt: float, clamp: bool,
                     lo: np.ndarray, hi: np.ndarray, damping: float):
    for i in nb.prange(position.shape[0]):
        if particle_type[i] != 0:
            continue
        for k in range(3):
            v = velocity[i, k] + acceleration[i, k] * dt
            x = position[i, k] + v * dt
            if clamp:
                if x < lo[k]:
                    x = lo[k]
                    v *= -damping
                elif k != 1 and x > hi[k]:
                    x = hi[k]
                    v *= -damping
            velocity[i, k] = v
            position[i, k] = x


def integrate_numba(particles: ParticleArrays, dt: float, clamp: bool,
                    min_bounds: np.ndarray, max_bounds: np.ndarray, damping: float):
    """Numba version of integrate_vectorized."""
    lo = np.asarray(min_bounds, dtype=np.float32)
    hi = np.asarray(max_bounds, dtype=np.float32)
    _integrate_numba(particles.position, particles.velocity, particles.acceleration,
                     particles.particle_type, np.float32(dt), clamp, lo, hi,
                     np.float32(damping))
