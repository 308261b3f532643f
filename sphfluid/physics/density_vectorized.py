"""
Vectorized neighbor search and density summation for SPH.

Neighbors are gathered as flat (query, particle) pair lists, either by
testing every pair (brute-force reference) or by walking the 27 cells
around each query in the spatial hash grid. Sums over pairs are then
plain bincounts.
"""

from typing import NamedTuple, Optional

import numpy as np

from ..core.cell_ranges import EMPTY_CELL
from ..core.kernel_vectorized import KernelConstants, SPHKernels
from ..core.particles import ParticleArrays
from ..core.spatial_grid import GridGeometry, SpatialHashGrid

# Upper bound on the (queries x particles) block held in memory at once
BRUTE_FORCE_BLOCK = 2_000_000

# The 27 cell offsets around a cell, x fastest
NEIGHBOR_OFFSETS = np.array(
    [(dx, dy, dz) for dz in (-1, 0, 1) for dy in (-1, 0, 1) for dx in (-1, 0, 1)],
    dtype=np.int64,
)


class NeighborPairs(NamedTuple):
    """Flat list of query/neighbor pairs within the support radius.

    r_vec is pos_j - point_i, r2 its squared length. Self pairs are
    included when the query points are the particles themselves.
    """
    i: np.ndarray       # (P,) int64 query index
    j: np.ndarray       # (P,) int64 particle index
    r_vec: np.ndarray   # (P, 3) float64
    r2: np.ndarray      # (P,) float64

    def __len__(self) -> int:
        return len(self.i)

    @staticmethod
    def empty() -> 'NeighborPairs':
        return NeighborPairs(np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64),
                             np.zeros((0, 3)), np.zeros(0))


def _finish_pairs(qi: np.ndarray, pj: np.ndarray, points: np.ndarray,
                  positions: np.ndarray, h: float,
                  candidates: Optional[np.ndarray]) -> NeighborPairs:
    if candidates is not None:
        keep = candidates[pj]
        qi, pj = qi[keep], pj[keep]
    r_vec = positions[pj] - points[qi]
    r2 = np.einsum('ij,ij->i', r_vec, r_vec)
    keep = r2 < h * h
    return NeighborPairs(qi[keep], pj[keep], r_vec[keep], r2[keep])


def find_pairs_brute_force(points: np.ndarray, positions: np.ndarray, h: float,
                           candidates: Optional[np.ndarray] = None) -> NeighborPairs:
    """All (query, particle) pairs closer than h by exhaustive testing.

    Args:
        points: Query positions, shape (Q, 3)
        positions: Particle positions, shape (N, 3)
        h: Support radius
        candidates: Optional (N,) bool mask of particles to consider

    Returns:
        NeighborPairs
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    n = len(positions)
    if len(points) == 0 or n == 0:
        return NeighborPairs.empty()

    chunk = max(1, BRUTE_FORCE_BLOCK // n)
    qi_parts, pj_parts = [], []
    for start in range(0, len(points), chunk):
        block = points[start:start + chunk]
        diff = positions[np.newaxis, :, :] - block[:, np.newaxis, :]
        r2 = np.einsum('qnk,qnk->qn', diff, diff)
        qi, pj = np.nonzero(r2 < h * h)
        qi_parts.append(qi + start)
        pj_parts.append(pj)

    qi = np.concatenate(qi_parts).astype(np.int64)
    pj = np.concatenate(pj_parts).astype(np.int64)
    return _finish_pairs(qi, pj, points, positions, h, candidates)


def find_pairs_grid(points: np.ndarray, positions: np.ndarray, geometry: GridGeometry,
                    sorted_indices: np.ndarray, cell_start: np.ndarray,
                    cell_end: np.ndarray, h: float,
                    candidates: Optional[np.ndarray] = None) -> NeighborPairs:
    """Pairs closer than h, gathering candidates from the 27 cells around each query.

    Query points outside the grid are clamped into the border cells.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    if len(points) == 0 or len(positions) == 0:
        return NeighborPairs.empty()

    cells, _ = geometry.cell_of(points)
    dims = np.asarray(geometry.dims, dtype=np.int64)
    sorted_indices = np.asarray(sorted_indices, dtype=np.int64)
    empty = np.int64(EMPTY_CELL)

    qi_parts, pj_parts = [], []
    for offset in NEIGHBOR_OFFSETS:
        neighbor = cells + offset
        query = np.flatnonzero(np.all((neighbor >= 0) & (neighbor < dims), axis=1))
        cell_id = geometry.linear_id(neighbor[query])

        start = cell_start[cell_id].astype(np.int64)
        occupied = start != empty
        query, start = query[occupied], start[occupied]
        counts = cell_end[cell_id[occupied]].astype(np.int64) - start
        total = int(counts.sum())
        if total == 0:
            continue

        # Expand every (query, cell) into one entry per particle of the cell
        run_base = np.repeat(np.cumsum(counts) - counts, counts)
        slots = np.repeat(start, counts) + (np.arange(total, dtype=np.int64) - run_base)
        qi_parts.append(np.repeat(query, counts))
        pj_parts.append(sorted_indices[slots])

    if not qi_parts:
        return NeighborPairs.empty()
    qi = np.concatenate(qi_parts)
    pj = np.concatenate(pj_parts)
    return _finish_pairs(qi, pj, points, positions, h, candidates)


def find_particle_pairs_grid(particles: ParticleArrays, grid: SpatialHashGrid,
                             h: float) -> NeighborPairs:
    """Particle/particle pairs using a grid built for the current positions."""
    return find_pairs_grid(particles.position, particles.position, grid.geometry,
                           grid.sorted_indices, grid.cell_start, grid.cell_end, h)


def density_from_pairs(pairs: NeighborPairs, mass: np.ndarray, n_points: int,
                       kernels: SPHKernels) -> np.ndarray:
    """Sum mass_j * Poly6(r²) per query point."""
    weights = mass[pairs.j].astype(np.float64) * kernels.poly6(pairs.r2)
    return np.bincount(pairs.i, weights=weights, minlength=n_points)


def apply_density_floor(density: np.ndarray, epsilon: float, rest_density: float) -> np.ndarray:
    """Replace negligible densities by the rest density (in place)."""
    density[density < epsilon] = rest_density
    return density


def compute_density_from_pairs(particles: ParticleArrays, pairs: NeighborPairs,
                               constants: KernelConstants, rest_density: float,
                               density_epsilon: float = 1e-4):
    """Fill particles.density from a particle/particle pair list."""
    density = density_from_pairs(pairs, particles.mass, len(particles), SPHKernels(constants))
    apply_density_floor(density, density_epsilon, rest_density)
    particles.density[:] = density


def compute_density_brute_force(particles: ParticleArrays, constants: KernelConstants,
                                rest_density: float, density_epsilon: float = 1e-4) -> NeighborPairs:
    """O(n²) density pass over every particle.

    Returns:
        The pair list, reusable by the force pass while positions are unchanged
    """
    pairs = find_pairs_brute_force(particles.position, particles.position, constants.h)
    compute_density_from_pairs(particles, pairs, constants, rest_density, density_epsilon)
    return pairs


def compute_density_grid_vectorized(particles: ParticleArrays, grid: SpatialHashGrid,
                                    constants: KernelConstants, rest_density: float,
                                    density_epsilon: float = 1e-4):
    """Density pass over every particle using the grid's cell ranges.

    Boundary particles get a density too, so their pressure is defined
    when they act as neighbors in the force pass.
    """
    pairs = find_particle_pairs_grid(particles, grid, constants.h)
    compute_density_from_pairs(particles, pairs, constants, rest_density, density_epsilon)


def sample_density_vectorized(points: np.ndarray, particles: ParticleArrays,
                              grid: SpatialHashGrid, constants: KernelConstants) -> np.ndarray:
    """Fluid density at arbitrary points, from fluid particles only.

    No density floor is applied: an empty neighborhood reads as zero.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    pairs = find_pairs_grid(points, particles.position, grid.geometry, grid.sorted_indices,
                            grid.cell_start, grid.cell_end, constants.h,
                            candidates=particles.fluid_mask())
    return density_from_pairs(pairs, particles.mass, len(points), SPHKernels(constants))


def sample_density_brute_force(points: np.ndarray, particles: ParticleArrays,
                               constants: KernelConstants) -> np.ndarray:
    """Brute-force version of sample_density_vectorized."""
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    pairs = find_pairs_brute_force(points, particles.position, constants.h,
                                   candidates=particles.fluid_mask())
    return density_from_pairs(pairs, particles.mass, len(points), SPHKernels(constants))
