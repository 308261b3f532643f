"""Physics modules: density, pressure and forces, rigid-body coupling."""

from .coupling import (
    EffectorFeedback,
    EffectorInfo,
    ParticleEffector,
    apply_effector_repulsion,
    compute_buoyancy,
    effector_sample_points,
)
from .density_vectorized import (
    NeighborPairs,
    compute_density_brute_force,
    compute_density_grid_vectorized,
    find_pairs_brute_force,
    find_pairs_grid,
    sample_density_vectorized,
)
from .forces_vectorized import (
    compute_forces_from_pairs,
    compute_forces_grid_vectorized,
    compute_pressure_vectorized,
    pressure_pair_acceleration,
    tait_equation_of_state,
)

__all__ = [
    'EffectorFeedback',
    'EffectorInfo',
    'ParticleEffector',
    'apply_effector_repulsion',
    'compute_buoyancy',
    'effector_sample_points',
    'NeighborPairs',
    'compute_density_brute_force',
    'compute_density_grid_vectorized',
    'find_pairs_brute_force',
    'find_pairs_grid',
    'sample_density_vectorized',
    'compute_forces_from_pairs',
    'compute_forces_grid_vectorized',
    'compute_pressure_vectorized',
    'pressure_pair_acceleration',
    'tait_equation_of_state',
]
