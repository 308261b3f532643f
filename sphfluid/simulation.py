"""
Simulation variants, render handoffs and the simulation context.

Variants share the physics and differ by composition:
- BruteForceSimulation: O(n²) NumPy reference solver
- GridSimulation: hash -> bitonic sort -> cell ranges -> grid SPH
- ScreenSpaceFluidSimulation: GridSimulation with the raw-buffer handoff

SimulationContext owns the configuration, the chosen variant and the
registered effectors, and turns setup errors into a SetupResult that
disables the simulation instead of raising.
"""

import enum
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Union, runtime_checkable

import numpy as np

from . import api
from .core.backend import configure_threads, resolve_backend
from .core.buffers import BufferArena
from .core.config import SimulationConfig
from .core.integrator import integrate_vectorized
from .core.kernel_vectorized import KernelConstants
from .core.particles import ParticleArrays, ParticleType
from .core.sampler import generate_particles
from .core.spatial_grid import GridGeometry, SpatialHashGrid
from .core.status import (ConfigurationError, SetupResult, SetupStatus, SimulationError,
                          result_from_error)
from .physics.coupling import (EffectorFeedback, EffectorInfo, ParticleEffector,
                               apply_effector_repulsion, compute_buoyancy,
                               effector_sample_points)
from .physics.density_vectorized import compute_density_brute_force, sample_density_brute_force
from .physics.forces_vectorized import compute_forces_from_pairs, compute_pressure_vectorized

logger = logging.getLogger(__name__)


class SimulationType(enum.Enum):
    """Which solver variant to build."""
    GPU = "gpu"                  # grid-accelerated, instanced handoff
    SSF = "ssf"                  # grid-accelerated, screen-space handoff
    BRUTE_FORCE = "brute_force"  # O(n²) reference


@dataclass(frozen=True)
class DrawArgs:
    """What an external renderer needs to issue its draw."""
    instance_count: int
    particle_scale: float = 0.0
    smoothing_radius: float = 0.0


# Render handoffs

class InstancedRenderHandoff:
    """Per-particle 4x4 TRS matrices for instanced mesh drawing.

    Fluid particles are scaled by render_scale; boundary particles get
    zero scale so they are drawn but invisible.
    """

    def __init__(self):
        self._matrices: Optional[np.ndarray] = None

    def particle_buffer(self, particles: ParticleArrays, config: SimulationConfig) -> np.ndarray:
        n = len(particles)
        if self._matrices is None or len(self._matrices) != n:
            self._matrices = np.zeros((n, 4, 4), dtype=np.float32)
        out = self._matrices
        out.flags.writeable = True

        scale = np.where(particles.particle_type == ParticleType.FLUID,
                         np.float32(config.render_scale), np.float32(0.0))
        out[:] = 0.0
        out[:, 0, 0] = scale
        out[:, 1, 1] = scale
        out[:, 2, 2] = scale
        out[:, :3, 3] = particles.position
        out[:, 3, 3] = 1.0

        out.flags.writeable = False
        return out

    def draw_args(self, particles: ParticleArrays, config: SimulationConfig) -> DrawArgs:
        return DrawArgs(instance_count=len(particles), particle_scale=config.render_scale)


PARTICLE_RECORD = np.dtype([
    ('position', np.float32, (3,)),
    ('velocity', np.float32, (3,)),
    ('density', np.float32),
    ('pressure', np.float32),
    ('particle_type', np.int32),
])


class ScreenSpaceRenderHandoff:
    """Raw particle records plus h for external depth/thickness passes."""

    def __init__(self):
        self._records: Optional[np.ndarray] = None

    def particle_buffer(self, particles: ParticleArrays, config: SimulationConfig) -> np.ndarray:
        n = len(particles)
        if self._records is None or len(self._records) != n:
            self._records = np.zeros(n, dtype=PARTICLE_RECORD)
        out = self._records
        out.flags.writeable = True
        out['position'] = particles.position
        out['velocity'] = particles.velocity
        out['density'] = particles.density
        out['pressure'] = particles.pressure
        out['particle_type'] = particles.particle_type
        out.flags.writeable = False
        return out

    def draw_args(self, particles: ParticleArrays, config: SimulationConfig) -> DrawArgs:
        return DrawArgs(instance_count=particles.n_fluid, particle_scale=config.render_scale,
                        smoothing_radius=config.smoothing_radius)


@runtime_checkable
class ParticleSimulation(Protocol):
    """Capability shared by all solver variants."""
    config: SimulationConfig

    def setup(self) -> SetupResult:
        ...

    def step(self, dt: float, effectors: Sequence[EffectorInfo] = ()) -> List[EffectorFeedback]:
        ...

    def get_particle_buffer(self) -> np.ndarray:
        ...

    def get_draw_args(self) -> DrawArgs:
        ...

    def teardown(self) -> None:
        ...


class _SimulationBase:
    """State and plumbing shared by the variants (not a variant itself)."""

    def __init__(self, config: SimulationConfig, handoff=None):
        self.config = config
        self.handoff = handoff if handoff is not None else InstancedRenderHandoff()
        self.particles: Optional[ParticleArrays] = None
        self.constants: Optional[KernelConstants] = None
        self.time = 0.0
        self.step_count = 0

    def _prepare(self):
        """Validate the config and build particles; raises SimulationError."""
        problems = self.config.validate()
        if self.config.is_empty_spawn_volume():
            raise ConfigurationError("; ".join(problems), SetupStatus.EMPTY_SPAWN_VOLUME)
        if problems:
            raise ConfigurationError("; ".join(problems))

        self.constants = KernelConstants.from_radius(self.config.smoothing_radius)
        self.particles = generate_particles(
            self.config, include_boundary=self.config.boundary_mode == "particles")
        self.time = 0.0
        self.step_count = 0

    def reload(self, config: SimulationConfig):
        """Apply parameters that need no reallocation."""
        if config.particle_mass != self.config.particle_mass and self.particles is not None:
            self.particles.set_mass(config.particle_mass)
        self.constants = self.constants.with_radius(config.smoothing_radius)
        self.config = config

    def reconfigure(self, config: SimulationConfig) -> SetupResult:
        """Apply structural changes by setting up again."""
        self.config = config
        return self.setup()

    def _couple(self, effectors: Sequence[EffectorInfo], sample) -> List[EffectorFeedback]:
        feedback = []
        for info in effectors:
            points = effector_sample_points(info, self.config.effector_sample_resolution)
            density = sample(points)
            result = compute_buoyancy(info, points, density, self.config.rest_density,
                                      self.config.gravity_vector, self.config.submersion_ratio)
            result.repelled_particles = apply_effector_repulsion(self.particles, info)
            feedback.append(result)
        return feedback

    def get_particle_buffer(self) -> np.ndarray:
        return self.handoff.particle_buffer(self.particles, self.config)

    def get_draw_args(self) -> DrawArgs:
        if self.particles is None:
            return DrawArgs(instance_count=0)
        return self.handoff.draw_args(self.particles, self.config)

    def get_statistics(self) -> dict:
        """Summary of the fluid state for logging."""
        fluid = self.particles.fluid_mask()
        if not fluid.any():
            return {'n_fluid': 0, 'n_boundary': int(len(self.particles))}
        density = self.particles.density[fluid]
        speed = np.linalg.norm(self.particles.velocity[fluid], axis=1)
        return {
            'n_fluid': int(fluid.sum()),
            'n_boundary': int(len(self.particles) - fluid.sum()),
            'mean_density': float(density.mean()),
            'max_density': float(density.max()),
            'max_speed': float(speed.max()),
            'min_height': float(self.particles.position[fluid, 1].min()),
            'time': self.time,
        }


class BruteForceSimulation(_SimulationBase):
    """Reference solver testing every particle pair with NumPy.

    Always runs on the CPU backend whatever config.backend says.
    """

    def setup(self) -> SetupResult:
        try:
            self._prepare()
        except SimulationError as e:
            self.particles = None
            return result_from_error(e)
        return SetupResult.success(f"{len(self.particles)} particles (brute force)")

    def step(self, dt: float, effectors: Sequence[EffectorInfo] = ()) -> List[EffectorFeedback]:
        cfg = self.config
        particles = self.particles

        pairs = compute_density_brute_force(particles, self.constants, cfg.rest_density,
                                            cfg.density_epsilon)
        compute_pressure_vectorized(particles, cfg.rest_density, cfg.gas_constant,
                                    cfg.pressure_exponent)
        compute_forces_from_pairs(particles, pairs, self.constants, cfg.viscosity_mu,
                                  cfg.gravity_vector)

        feedback = self._couple(
            effectors, lambda points: sample_density_brute_force(points, particles, self.constants))

        integrate_vectorized(particles, dt, cfg.boundary_mode == "clamp",
                             cfg.min_bounds, cfg.max_bounds, cfg.boundary_damping)
        self.time += dt
        self.step_count += 1
        return feedback

    def teardown(self):
        self.particles = None


class GridSimulation(_SimulationBase):
    """Grid-accelerated solver with static boundary particles."""

    def __init__(self, config: SimulationConfig, handoff=None):
        super().__init__(config, handoff)
        self.arena = BufferArena()
        self.grid: Optional[SpatialHashGrid] = None

    def setup(self) -> SetupResult:
        try:
            backend = resolve_backend(self.config.backend)
            configure_threads(self.config.num_threads)
            self._prepare()

            if self.arena.released:
                self.arena = BufferArena()
            geometry = GridGeometry.from_config(self.config)
            if self.grid is None or self.grid.arena is not self.arena:
                self.grid = SpatialHashGrid(geometry, self.arena, self.config.max_padded_count,
                                            backend.value)
            else:
                self.grid.set_geometry(geometry)
                self.grid.backend = backend.value
                self.grid.max_padded_count = self.config.max_padded_count
            self.grid.reserve(len(self.particles))
        except SimulationError as e:
            self.particles = None
            return result_from_error(e)

        return SetupResult.success(
            f"{self.particles.n_fluid} fluid + {self.particles.n_boundary} boundary particles, "
            f"padded to {self.grid.padded_count}, backend {backend.value}")

    def reload(self, config: SimulationConfig):
        h_changed = config.smoothing_radius != self.config.smoothing_radius
        super().reload(config)
        if h_changed:
            self.grid.set_geometry(GridGeometry.from_config(config))

    def step(self, dt: float, effectors: Sequence[EffectorInfo] = ()) -> List[EffectorFeedback]:
        cfg = self.config
        particles = self.particles
        backend = self.grid.backend

        self.grid.build(particles.position)
        api.compute_density(particles, self.grid, self.constants, cfg, backend)
        api.compute_pressure(particles, cfg, backend)
        api.compute_forces(particles, self.grid, self.constants, cfg, backend)

        feedback = self._couple(
            effectors,
            lambda points: api.sample_density(points, particles, self.grid, self.constants, backend))

        api.integrate(particles, dt, cfg, backend)
        self.time += dt
        self.step_count += 1
        return feedback

    def teardown(self):
        self.arena.release()
        self.grid = None
        self.particles = None


class ScreenSpaceFluidSimulation:
    """Grid solver handing raw particle records to a screen-space renderer."""

    def __init__(self, config: SimulationConfig):
        self.solver = GridSimulation(config, ScreenSpaceRenderHandoff())

    @property
    def config(self) -> SimulationConfig:
        return self.solver.config

    @config.setter
    def config(self, config: SimulationConfig):
        self.solver.config = config

    @property
    def particles(self) -> Optional[ParticleArrays]:
        return self.solver.particles

    def setup(self) -> SetupResult:
        return self.solver.setup()

    def step(self, dt: float, effectors: Sequence[EffectorInfo] = ()) -> List[EffectorFeedback]:
        return self.solver.step(dt, effectors)

    def reload(self, config: SimulationConfig):
        self.solver.reload(config)

    def reconfigure(self, config: SimulationConfig) -> SetupResult:
        return self.solver.reconfigure(config)

    def get_particle_buffer(self) -> np.ndarray:
        return self.solver.get_particle_buffer()

    def get_draw_args(self) -> DrawArgs:
        return self.solver.get_draw_args()

    def get_statistics(self) -> dict:
        return self.solver.get_statistics()

    def teardown(self):
        self.solver.teardown()


def create_simulation(kind: Union[str, SimulationType] = SimulationType.GPU,
                      config: Optional[SimulationConfig] = None) -> ParticleSimulation:
    """Build a solver variant.

    Without a config, the brute-force variant defaults to the box clamp
    boundary and the grid variants to boundary particles.
    """
    kind = SimulationType(kind)
    if kind is SimulationType.BRUTE_FORCE:
        return BruteForceSimulation(config or SimulationConfig(boundary_mode="clamp", backend="cpu"))
    config = config or SimulationConfig()
    if kind is SimulationType.SSF:
        return ScreenSpaceFluidSimulation(config)
    return GridSimulation(config)


class SimulationContext:
    """Owns one simulation, its configuration and its effectors.

    Usage:
        with SimulationContext(config) as ctx:
            ctx.register_effector(body)
            for _ in range(100):
                ctx.step()
    """

    def __init__(self, config: Optional[SimulationConfig] = None,
                 kind: Union[str, SimulationType] = SimulationType.GPU,
                 simulation: Optional[ParticleSimulation] = None):
        if simulation is None:
            simulation = create_simulation(kind, config)
        self.simulation = simulation
        self.effectors: List[ParticleEffector] = []
        self.in_simulation = False
        self.last_result: Optional[SetupResult] = None
        self.last_feedback: List[EffectorFeedback] = []

    @property
    def config(self) -> SimulationConfig:
        return self.simulation.config

    @property
    def particles(self) -> Optional[ParticleArrays]:
        return self.simulation.particles

    def register_effector(self, effector: ParticleEffector):
        if not isinstance(effector, ParticleEffector):
            raise TypeError(f"{type(effector).__name__} does not implement ParticleEffector")
        if effector not in self.effectors:
            self.effectors.append(effector)

    def unregister_effector(self, effector: ParticleEffector):
        if effector in self.effectors:
            self.effectors.remove(effector)

    def _disable(self, result: SetupResult):
        self.in_simulation = False
        self.last_result = result
        logger.warning("Simulation disabled (%s): %s", result.status.value, result.message)

    def start(self) -> SetupResult:
        """Set the simulation up; failures disable it and are reported."""
        if self.in_simulation:
            return self.last_result
        result = self.simulation.setup()
        if not result.ok:
            self._disable(result)
            return result
        self.in_simulation = True
        self.last_result = result
        logger.info("Simulation started: %s", result.message)
        return result

    def stop(self):
        """Tear down and release every buffer."""
        self.simulation.teardown()
        self.in_simulation = False

    def step(self, dt: Optional[float] = None) -> List[EffectorFeedback]:
        """Advance one tick; a no-op while disabled.

        Effector state is read once before the tick and each effector's
        apply_forces is called once after it.
        """
        if not self.in_simulation:
            return []
        if dt is None:
            dt = self.config.time_step

        infos = [effector.get_effector_info() for effector in self.effectors]
        t0 = time.perf_counter()
        try:
            feedback = self.simulation.step(dt, infos)
        except SimulationError as e:
            self._disable(result_from_error(e))
            return []
        logger.debug("Tick %.3f ms", (time.perf_counter() - t0) * 1000.0)

        for effector, result in zip(self.effectors, feedback):
            effector.apply_forces(result.force, result.torque)
        self.last_feedback = feedback
        return feedback

    def reload_config(self, config: SimulationConfig) -> SetupResult:
        """Swap in a new configuration.

        Hot parameters are applied in place; structural ones set the
        simulation up again (buffers are reused when sizes match).
        """
        problems = config.validate()
        if problems:
            return SetupResult(SetupStatus.INVALID_CONFIG, "; ".join(problems))

        if not self.in_simulation:
            self.simulation.config = config
            return SetupResult.success("stored")

        structural = self.config.structural_changes(config)
        try:
            if structural:
                logger.info("Structural config change (%s), setting up again",
                            ", ".join(structural))
                result = self.simulation.reconfigure(config)
                if not result.ok:
                    self._disable(result)
                    return result
                self.last_result = result
                return result
            self.simulation.reload(config)
        except SimulationError as e:
            result = result_from_error(e)
            self._disable(result)
            return result
        return SetupResult.success("reloaded")

    def get_particle_buffer(self) -> Optional[np.ndarray]:
        if self.simulation.particles is None:
            return None
        return self.simulation.get_particle_buffer()

    def get_draw_args(self) -> DrawArgs:
        return self.simulation.get_draw_args()

    def __enter__(self) -> 'SimulationContext':
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False
