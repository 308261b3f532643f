"""
Water tank scenarios.

Creates:
- A dam break: fluid stacked in one quadrant of an open-top tank
- A floating box: an in-memory rigid body implementing ParticleEffector,
  with its own explicit integrator
"""

from typing import Optional, Tuple

import numpy as np

from ..core.config import SimulationConfig
from ..physics.coupling import EffectorInfo


def create_dam_break_config(n_particles: int = 80000, **overrides) -> SimulationConfig:
    """Tank with the fluid in the x in [0.5, 1], z in [0, 0.5] column.

    Args:
        n_particles: Target number of fluid particles
        **overrides: Any other SimulationConfig field

    Returns:
        Configuration for the scenario
    """
    values = dict(
        target_particle_count=n_particles,
        fluid_region=((0.5, 0.0, 0.0), (1.0, 1.0, 0.5)),
    )
    values.update(overrides)
    return SimulationConfig.from_dict(values)


def _rotation_from_vector(rotvec: np.ndarray) -> np.ndarray:
    """Rodrigues formula: rotation by |rotvec| about rotvec."""
    angle = float(np.linalg.norm(rotvec))
    if angle < 1e-12:
        return np.eye(3)
    k = rotvec / angle
    K = np.array([[0.0, -k[2], k[1]],
                  [k[2], 0.0, -k[0]],
                  [-k[1], k[0], 0.0]])
    return np.eye(3) + np.sin(angle) * K + (1.0 - np.cos(angle)) * (K @ K)


class FloatingBox:
    """Rigid box that reads its feedback from the fluid and integrates itself."""

    def __init__(self, position, size=(0.2, 0.2, 0.2), density: float = 500.0,
                 gravity=(0.0, -9.81, 0.0), stiffness: float = 1000.0,
                 viscosity: float = 1.0, linear_damping: float = 0.0):
        self.position = np.asarray(position, dtype=np.float64)
        self.size = np.asarray(size, dtype=np.float64)
        self.rotation = np.eye(3)
        self.linear_velocity = np.zeros(3)
        self.angular_velocity = np.zeros(3)
        self.mass = density * float(np.prod(self.size))
        self.gravity = np.asarray(gravity, dtype=np.float64)
        self.stiffness = stiffness
        self.viscosity = viscosity
        self.linear_damping = linear_damping

        # Principal moments of a solid box
        sx, sy, sz = self.size
        self.inertia_body = self.mass / 12.0 * np.array([sy * sy + sz * sz,
                                                         sx * sx + sz * sz,
                                                         sx * sx + sy * sy])
        self.force = np.zeros(3)
        self.torque = np.zeros(3)
        self.feedback_count = 0

    def get_effector_info(self) -> EffectorInfo:
        return EffectorInfo.from_transform(self.position, self.size, self.rotation,
                                           self.linear_velocity, self.angular_velocity,
                                           self.stiffness, self.viscosity)

    def apply_forces(self, force: np.ndarray, torque: np.ndarray) -> None:
        self.force = np.asarray(force, dtype=np.float64)
        self.torque = np.asarray(torque, dtype=np.float64)
        self.feedback_count += 1

    def advance(self, dt: float):
        """Explicit Euler step using the last fluid feedback plus gravity."""
        accel = self.force / self.mass + self.gravity
        self.linear_velocity = (self.linear_velocity + accel * dt) * (1.0 - self.linear_damping * dt)
        self.position = self.position + self.linear_velocity * dt

        inertia_world = self.rotation @ np.diag(self.inertia_body) @ self.rotation.T
        self.angular_velocity = self.angular_velocity + np.linalg.solve(inertia_world, self.torque) * dt
        self.rotation = _rotation_from_vector(self.angular_velocity * dt) @ self.rotation

        # Keep the rotation orthonormal
        u, _, vt = np.linalg.svd(self.rotation)
        self.rotation = u @ vt


def create_floating_box(config: Optional[SimulationConfig] = None,
                        size: Tuple[float, float, float] = (0.2, 0.2, 0.2),
                        density: float = 500.0) -> FloatingBox:
    """Half-density box dropped above the middle of the tank."""
    config = config or SimulationConfig()
    center = 0.5 * (config.min_bounds + config.max_bounds)
    position = center.copy()
    position[1] = config.max_bounds[1] - 0.5 * size[1]
    return FloatingBox(position, size, density, gravity=config.gravity)
