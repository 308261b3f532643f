"""
Solver configuration.

A single dataclass carries every parameter of the fluid solver. Values
that only feed the per-tick math can be swapped between ticks (hot
reload); structural values require the simulation to be set up again.
"""

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Tuple

import numpy as np

Vec3 = Tuple[float, float, float]

BOUNDARY_MODES = ("clamp", "particles")
SAMPLERS = ("random", "lattice")

# Parameters that can change between ticks without reallocating anything
HOT_RELOADABLE = frozenset({
    "particle_mass",
    "rest_density",
    "gas_constant",
    "pressure_exponent",
    "viscosity_mu",
    "gravity",
    "smoothing_radius",
    "boundary_damping",
    "density_epsilon",
    "submersion_ratio",
    "render_scale",
    "effector_sample_resolution",
    "time_step",
})


@dataclass(frozen=True)
class SimulationConfig:
    """Parameters of the SPH solver.

    Defaults follow the reference water tank: 2 g particles, water rest
    density, Tait stiffness 2000 with exponent 7 and h = 0.1 m.
    """
    # Physical parameters
    particle_mass: float = 0.02
    rest_density: float = 1000.0
    gas_constant: float = 2000.0
    pressure_exponent: float = 7.0
    viscosity_mu: float = 0.05
    gravity: Vec3 = (0.0, -9.81, 0.0)

    # Simulation parameters
    smoothing_radius: float = 0.1
    boundary_damping: float = 0.4
    time_step: float = 0.02
    density_epsilon: float = 1e-4

    # Spawn settings
    target_particle_count: int = 80000
    max_particles: int = 9_999_999
    spawn_volume_center: Vec3 = (0.0, 0.0, 0.0)
    spawn_volume_size: Vec3 = (1.0, 1.0, 1.0)
    fluid_region: Tuple[Vec3, Vec3] = ((0.0, 0.0, 0.0), (1.0, 1.0, 1.0))
    boundary_layers: int = 4
    spacing_parameter: float = 1.8
    sampler: str = "random"
    seed: int = 0

    # Solver selection
    boundary_mode: str = "particles"
    backend: str = "numba"
    num_threads: int = 0
    grid_headroom: float = 1.0
    max_padded_count: int = 2 ** 24

    # Rigid-body coupling
    submersion_ratio: float = 0.5
    effector_sample_resolution: int = 4

    # Render handoff
    render_scale: float = 0.015

    @property
    def spacing(self) -> float:
        """Boundary/lattice particle pitch."""
        return self.smoothing_radius / self.spacing_parameter

    @property
    def min_bounds(self) -> np.ndarray:
        return np.asarray(self.spawn_volume_center, dtype=np.float64) - \
            0.5 * np.asarray(self.spawn_volume_size, dtype=np.float64)

    @property
    def max_bounds(self) -> np.ndarray:
        return np.asarray(self.spawn_volume_center, dtype=np.float64) + \
            0.5 * np.asarray(self.spawn_volume_size, dtype=np.float64)

    @property
    def gravity_vector(self) -> np.ndarray:
        return np.asarray(self.gravity, dtype=np.float32)

    def validate(self) -> List[str]:
        """Collect every configuration problem.

        Returns:
            List of messages, empty when the configuration is usable
        """
        problems = []
        if not self.smoothing_radius > 0:
            problems.append(f"smoothing_radius must be > 0, got {self.smoothing_radius}")
        if not self.particle_mass > 0:
            problems.append(f"particle_mass must be > 0, got {self.particle_mass}")
        if not self.rest_density > 0:
            problems.append(f"rest_density must be > 0, got {self.rest_density}")
        if self.gas_constant < 0:
            problems.append(f"gas_constant must be >= 0, got {self.gas_constant}")
        if self.viscosity_mu < 0:
            problems.append(f"viscosity_mu must be >= 0, got {self.viscosity_mu}")
        if not self.time_step > 0:
            problems.append(f"time_step must be > 0, got {self.time_step}")
        if len(self.gravity) != 3:
            problems.append("gravity must have three components")
        if len(self.spawn_volume_size) != 3 or min(self.spawn_volume_size) <= 0:
            problems.append(f"spawn volume is empty: size={self.spawn_volume_size}")
        if self.target_particle_count < 0:
            problems.append("target_particle_count must be >= 0")
        if self.max_particles <= 0:
            problems.append("max_particles must be > 0")
        if self.boundary_layers < 0:
            problems.append("boundary_layers must be >= 0")
        if not self.spacing_parameter > 0:
            problems.append("spacing_parameter must be > 0")
        if self.boundary_mode not in BOUNDARY_MODES:
            problems.append(f"boundary_mode must be one of {BOUNDARY_MODES}, got {self.boundary_mode!r}")
        if self.sampler not in SAMPLERS:
            problems.append(f"sampler must be one of {SAMPLERS}, got {self.sampler!r}")
        lo, hi = self.fluid_region
        if any(not (0.0 <= a < b <= 1.0) for a, b in zip(lo, hi)):
            problems.append(f"fluid_region must be an ordered sub-box of [0, 1]^3, got {self.fluid_region}")
        if self.effector_sample_resolution < 1:
            problems.append("effector_sample_resolution must be >= 1")
        if self.grid_headroom < 0:
            problems.append("grid_headroom must be >= 0")
        return problems

    def is_empty_spawn_volume(self) -> bool:
        return len(self.spawn_volume_size) == 3 and min(self.spawn_volume_size) <= 0

    def replace(self, **changes: Any) -> 'SimulationConfig':
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **_normalize(changes))

    def structural_changes(self, other: 'SimulationConfig') -> List[str]:
        """Names of changed fields that need a fresh setup."""
        changed = []
        for f in dataclasses.fields(self):
            if f.name in HOT_RELOADABLE:
                continue
            if getattr(self, f.name) != getattr(other, f.name):
                changed.append(f.name)
        return changed

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @staticmethod
    def from_dict(values: Mapping[str, Any]) -> 'SimulationConfig':
        """Build a configuration from a plain mapping.

        Unknown keys raise TypeError, vectors may be given as lists.
        """
        return SimulationConfig(**_normalize(dict(values)))


def _normalize(values: Dict[str, Any]) -> Dict[str, Any]:
    """Turn list-valued vectors into tuples so the config stays hashable."""
    out = {}
    for key, value in values.items():
        if key == "fluid_region":
            value = tuple(tuple(float(c) for c in corner) for corner in value)
        elif isinstance(value, (list, np.ndarray)):
            value = tuple(float(c) for c in value)
        out[key] = value
    return out
