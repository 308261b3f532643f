"""
Uniform spatial hash grid rebuilt every tick.

Pipeline per build:
1. Hash: every particle gets key = (cz * gy + cy) * gx + cx, the linear
   id of the cell of size h that contains it. Padding slots up to the
   next power of two get the EMPTY_CELL key so they sort to the tail.
2. Sort: bitonic sort of (key, particle index) entries.
3. Ranges: per-cell [start, end) into the sorted entries.

Neighbors of a point are then the particles of the 27 cells around
its cell, which covers the whole support radius because cell size = h.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import numba as nb

from .bitonic_sort import next_power_of_two
from .buffers import BufferArena
from .cell_ranges import EMPTY_CELL
from .config import SimulationConfig
from .kernel_numba import cell_coords
from .status import CapacityError, ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GridGeometry:
    """Axis-aligned grid of cubic cells."""
    origin: Tuple[float, float, float]
    dims: Tuple[int, int, int]
    cell_size: float

    @property
    def n_cells(self) -> int:
        return int(self.dims[0]) * int(self.dims[1]) * int(self.dims[2])

    @staticmethod
    def from_config(config: SimulationConfig) -> 'GridGeometry':
        """Cover the spawn volume plus the boundary shell and headroom.

        The margin is boundary_layers * spacing plus one cell, so every
        boundary particle hashes to a valid cell. The open top gets an
        extra grid_headroom * height for splashes.
        """
        h = config.smoothing_radius
        if not h > 0:
            raise ConfigurationError(f"Smoothing radius must be positive, got {h}")

        margin = config.boundary_layers * config.spacing + h
        lo = config.min_bounds - margin
        hi = config.max_bounds + margin
        hi[1] += config.grid_headroom * config.spawn_volume_size[1]

        dims = tuple(int(d) for d in np.ceil((hi - lo) / h).astype(np.int64))
        geometry = GridGeometry(origin=tuple(float(v) for v in lo), dims=dims, cell_size=float(h))
        if geometry.n_cells >= int(EMPTY_CELL):
            raise CapacityError(f"Grid of {dims} cells does not fit 32-bit hash keys")
        return geometry

    def cell_of(self, positions: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Clamped integer cell coordinates and an in-grid mask."""
        positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        cells = np.floor((positions - np.asarray(self.origin)) / self.cell_size).astype(np.int64)
        dims = np.asarray(self.dims, dtype=np.int64)
        inside = np.all((cells >= 0) & (cells < dims), axis=1)
        return np.clip(cells, 0, dims - 1), inside

    def linear_id(self, cells: np.ndarray) -> np.ndarray:
        gx, gy, _ = self.dims
        return (cells[..., 2] * gy + cells[..., 1]) * gx + cells[..., 0]


def hash_positions_vectorized(positions: np.ndarray, geometry: GridGeometry,
                              keys: np.ndarray, values: np.ndarray) -> int:
    """Write hash entries for every particle plus padding.

    Args:
        positions: Particle positions, shape (N, 3)
        geometry: Grid geometry
        keys: uint32 keys, padded length >= N, overwritten
        values: uint32 particle indices, same length, overwritten

    Returns:
        Number of particles outside the grid (clamped to border cells)
    """
    n = len(positions)
    cells, inside = geometry.cell_of(positions)
    keys[:n] = geometry.linear_id(cells).astype(np.uint32)
    keys[n:] = EMPTY_CELL
    values[:] = np.arange(len(values), dtype=np.uint32)
    return int(n - np.count_nonzero(inside))


@nb.njit(parallel=True, fastmath=True, cache=True)
def _hash_positions_numba(positions, ox, oy, oz, cell_size, gx, gy, gz,
                          keys, values, outside):
    n = positions.shape[0]
    padded = keys.shape[0]
    for i in nb.prange(padded):
        values[i] = i
        if i < n:
            cx, cy, cz, inside = cell_coords(positions[i, 0], positions[i, 1], positions[i, 2],
                                             ox, oy, oz, cell_size, gx, gy, gz)
            keys[i] = (cz * gy + cy) * gx + cx
            outside[i] = not inside
        else:
            keys[i] = 0xFFFFFFFF


def hash_positions_numba(positions: np.ndarray, geometry: GridGeometry,
                         keys: np.ndarray, values: np.ndarray) -> int:
    """Numba version of hash_positions_vectorized."""
    outside = np.zeros(len(positions), dtype=np.bool_)
    ox, oy, oz = geometry.origin
    gx, gy, gz = geometry.dims
    _hash_positions_numba(positions, ox, oy, oz, geometry.cell_size, gx, gy, gz,
                          keys, values, outside)
    return int(np.count_nonzero(outside))


class SpatialHashGrid:
    """Hash / sort / range pipeline with buffers owned by a BufferArena.

    Buffers are sized from the padded particle count and the cell
    count, and only reallocated when those change.
    """

    def __init__(self, geometry: GridGeometry, arena: BufferArena,
                 max_padded_count: int = 2 ** 24, backend: str = "cpu"):
        self.geometry = geometry
        self.arena = arena
        self.max_padded_count = max_padded_count
        self.backend = backend
        self.count = 0
        self.padded_count = 0
        self.out_of_range = 0

        self._keys = None
        self._values = None
        self._cell_start = arena.allocate("cell_start", (geometry.n_cells,), np.uint32, EMPTY_CELL)
        self._cell_end = arena.allocate("cell_end", (geometry.n_cells,), np.uint32, 0)

        logger.info("Spatial grid: %dx%dx%d cells, cell size %.4g",
                    *geometry.dims, geometry.cell_size)

    def reserve(self, n_particles: int):
        """Size the hash buffers for n particles.

        Raises:
            CapacityError: If the padded count exceeds max_padded_count
        """
        padded = next_power_of_two(max(n_particles, 1))
        if padded > self.max_padded_count:
            raise CapacityError(f"Padded particle count {padded} exceeds the limit "
                                f"of {self.max_padded_count}")
        if padded == self.padded_count and self._keys is not None:
            self.count = n_particles
            return
        self._keys = self.arena.allocate("hash_keys", (padded,), np.uint32, EMPTY_CELL)
        self._values = self.arena.allocate("hash_values", (padded,), np.uint32, 0)
        self.padded_count = padded
        self.count = n_particles

    def set_geometry(self, geometry: GridGeometry):
        """Switch to a new grid (e.g. after h changed), resizing the range table."""
        if geometry == self.geometry:
            return
        if geometry.n_cells >= int(EMPTY_CELL):
            raise CapacityError(f"Grid of {geometry.dims} cells does not fit 32-bit hash keys")
        self.geometry = geometry
        self._cell_start = self.arena.allocate("cell_start", (geometry.n_cells,), np.uint32, EMPTY_CELL)
        self._cell_end = self.arena.allocate("cell_end", (geometry.n_cells,), np.uint32, 0)

    @property
    def keys(self) -> np.ndarray:
        return self.arena.get(self._keys)

    @property
    def values(self) -> np.ndarray:
        return self.arena.get(self._values)

    @property
    def cell_start(self) -> np.ndarray:
        return self.arena.get(self._cell_start)

    @property
    def cell_end(self) -> np.ndarray:
        return self.arena.get(self._cell_end)

    @property
    def sorted_indices(self) -> np.ndarray:
        """Particle indices in sorted order (valid entries only)."""
        return self.values[:self.count]

    def build(self, positions: np.ndarray):
        """Run hash, sort and range stages for the current positions."""
        from .backend import dispatch

        n = len(positions)
        if n != self.count or self._keys is None:
            self.reserve(n)

        keys, values = self.keys, self.values
        self.out_of_range = dispatch("hash_positions", positions, self.geometry,
                                     keys, values, backend=self.backend)
        if self.out_of_range:
            logger.warning("%d particles outside the spatial grid were clamped "
                           "into border cells", self.out_of_range)

        dispatch("sort_hash_entries", keys, values, backend=self.backend)
        dispatch("build_cell_ranges", keys, n, self.cell_start, self.cell_end,
                 backend=self.backend)

    def get_statistics(self) -> dict:
        """Occupancy statistics for debugging."""
        from .cell_ranges import cell_lengths

        lengths = cell_lengths(self.cell_start, self.cell_end)
        occupied = lengths > 0
        n_occupied = int(np.count_nonzero(occupied))
        return {
            'total_cells': self.geometry.n_cells,
            'occupied_cells': n_occupied,
            'occupancy_rate': n_occupied / self.geometry.n_cells,
            'max_particles_per_cell': int(lengths.max()) if len(lengths) else 0,
            'mean_particles_per_occupied_cell': float(lengths[occupied].mean()) if n_occupied else 0.0,
            'padded_count': self.padded_count,
            'out_of_range': self.out_of_range,
        }
