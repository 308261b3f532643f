"""
Initial particle generation.

Creates:
- A layered boundary shell (floor plus four side walls, open top)
  around the spawn volume, at a pitch of h / spacing_parameter
- Fluid particles filling a sub-box of the spawn volume, either
  uniformly at random or on a regular lattice

Generation is bounded: the total particle count is capped by
``max_particles`` and a warning is logged when the cap trips.
"""

import logging
from typing import Tuple

import numpy as np

from .config import SimulationConfig
from .particles import ParticleArrays
from .status import ConfigurationError, SetupStatus

logger = logging.getLogger(__name__)

# Keeps random fluid samples off the wall particles
WALL_BUFFER_FRACTION = 0.2


def _axis_range(start: float, stop: float, spacing: float) -> np.ndarray:
    """Inclusive range start, start + spacing, ... <= stop."""
    if stop < start:
        return np.zeros(0, dtype=np.float64)
    n = int(np.floor((stop - start) / spacing + 1e-6)) + 1
    return start + spacing * np.arange(n, dtype=np.float64)


def _plane(xs: np.ndarray, ys: np.ndarray, zs: np.ndarray) -> np.ndarray:
    """Cartesian product of three coordinate lists as (K, 3)."""
    gx, gy, gz = np.meshgrid(xs, ys, zs, indexing='ij')
    return np.column_stack((gx.ravel(), gy.ravel(), gz.ravel()))


def generate_boundary_shell(min_bounds: np.ndarray, max_bounds: np.ndarray,
                            spacing: float, layers: int) -> np.ndarray:
    """Layered static wall particles around an open-top box.

    The floor has ``layers`` layers starting at min_y and going down;
    the side walls go from min_y + spacing up to max_y, each with
    ``layers`` layers going outward. Floor and X walls extend
    (layers - 1) * spacing past the box so corners stay closed.

    Args:
        min_bounds: Lower corner of the spawn volume
        max_bounds: Upper corner of the spawn volume
        spacing: Particle pitch
        layers: Number of layers (0 gives an empty shell)

    Returns:
        Positions, shape (B, 3) float32
    """
    if layers <= 0:
        return np.zeros((0, 3), dtype=np.float32)

    extent = (layers - 1) * spacing
    x_ext = _axis_range(min_bounds[0] - extent, max_bounds[0] + extent, spacing)
    z_ext = _axis_range(min_bounds[2] - extent, max_bounds[2] + extent, spacing)
    x_inner = _axis_range(min_bounds[0] + spacing, max_bounds[0] - spacing, spacing)
    y_wall = _axis_range(min_bounds[1] + spacing, max_bounds[1], spacing)

    blocks = []
    for layer in range(layers):
        offset = layer * spacing

        # Floor
        blocks.append(_plane(x_ext, np.array([min_bounds[1] - offset]), z_ext))

        if len(y_wall) == 0:
            continue

        # X- / X+ walls span the extended z range
        blocks.append(_plane(np.array([min_bounds[0] - offset]), y_wall, z_ext))
        blocks.append(_plane(np.array([max_bounds[0] + offset]), y_wall, z_ext))

        # Z- / Z+ walls fill between the X walls
        if len(x_inner) > 0:
            blocks.append(_plane(x_inner, y_wall, np.array([min_bounds[2] - offset])))
            blocks.append(_plane(x_inner, y_wall, np.array([max_bounds[2] + offset])))

    return np.concatenate(blocks).astype(np.float32)


def fluid_region_bounds(config: SimulationConfig) -> Tuple[np.ndarray, np.ndarray]:
    """World-space box that gets filled with fluid, inset from the walls."""
    lo_frac = np.asarray(config.fluid_region[0], dtype=np.float64)
    hi_frac = np.asarray(config.fluid_region[1], dtype=np.float64)
    size = config.max_bounds - config.min_bounds

    buffer = WALL_BUFFER_FRACTION * config.spacing
    lo = config.min_bounds + lo_frac * size + buffer
    hi = config.min_bounds + hi_frac * size - buffer
    return lo, hi


def sample_fluid_random(lo: np.ndarray, hi: np.ndarray, count: int,
                        rng: np.random.Generator) -> np.ndarray:
    """Uniformly random positions inside [lo, hi]."""
    return rng.uniform(lo, hi, size=(count, 3)).astype(np.float32)


def sample_fluid_lattice(lo: np.ndarray, hi: np.ndarray, count: int,
                         spacing: float) -> np.ndarray:
    """Regular lattice positions inside [lo, hi], filled bottom-up.

    Returns at most ``count`` positions; fewer when the box holds fewer
    lattice sites.
    """
    xs = _axis_range(lo[0] + 0.5 * spacing, hi[0], spacing)
    ys = _axis_range(lo[1] + 0.5 * spacing, hi[1], spacing)
    zs = _axis_range(lo[2] + 0.5 * spacing, hi[2], spacing)

    # y slowest so truncation removes the top layers
    gy, gx, gz = np.meshgrid(ys, xs, zs, indexing='ij')
    sites = np.column_stack((gx.ravel(), gy.ravel(), gz.ravel()))
    return sites[:count].astype(np.float32)


def generate_particles(config: SimulationConfig, include_boundary: bool = True) -> ParticleArrays:
    """Create the initial particle store for a configuration.

    Boundary particles come first in the store, then fluid.

    Args:
        config: Simulation configuration
        include_boundary: Whether to build the layered wall shell

    Returns:
        Particle arrays with mass assigned

    Raises:
        ConfigurationError: If the spawn volume is empty
    """
    if config.is_empty_spawn_volume():
        raise ConfigurationError(f"Spawn volume is empty: {config.spawn_volume_size}",
                                 SetupStatus.EMPTY_SPAWN_VOLUME)

    spacing = config.spacing
    lo, hi = fluid_region_bounds(config)
    if np.any(hi <= lo) and config.target_particle_count > 0:
        raise ConfigurationError(
            f"Fluid region collapses after the wall buffer: lo={lo}, hi={hi}",
            SetupStatus.EMPTY_SPAWN_VOLUME)

    if include_boundary:
        boundary = generate_boundary_shell(config.min_bounds, config.max_bounds,
                                           spacing, config.boundary_layers)
    else:
        boundary = np.zeros((0, 3), dtype=np.float32)

    # Circuit breaker on the total count
    cap = config.max_particles
    if len(boundary) >= cap:
        logger.warning("Particle cap %d reached by the boundary shell alone (%d particles); "
                       "no fluid generated", cap, len(boundary))
        boundary = boundary[:cap]
        n_fluid = 0
    else:
        n_fluid = min(config.target_particle_count, cap - len(boundary))
        if n_fluid < config.target_particle_count:
            logger.warning("Particle cap %d reached: generating %d of %d fluid particles",
                           cap, n_fluid, config.target_particle_count)

    if config.sampler == "lattice":
        fluid = sample_fluid_lattice(lo, hi, n_fluid, spacing)
        if len(fluid) < n_fluid:
            logger.warning("Fluid region holds only %d lattice sites, %d requested",
                           len(fluid), n_fluid)
    else:
        rng = np.random.default_rng(config.seed)
        fluid = sample_fluid_random(lo, hi, n_fluid, rng)

    particles = ParticleArrays.from_positions(fluid, boundary, mass=config.particle_mass)
    logger.info("Generated %d fluid and %d boundary particles", len(fluid), len(boundary))
    return particles
