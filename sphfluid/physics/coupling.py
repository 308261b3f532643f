"""
Force exchange with externally owned rigid bodies ("effectors").

Each tick an effector hands over an EffectorInfo snapshot. The solver:
- samples fluid density on a regular grid inside the body and turns
  submerged samples into a buoyancy force and torque for the body
- pushes fluid particles out of the body's oriented box with a
  stiffness * penetration term plus a damping term relative to the
  body's velocity at the particle

The exchange is loosely coupled: body state is read once, before the
particles move, and the feedback is applied by the body's own
integrator.
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import numpy as np

from ..core.particles import ParticleArrays


@dataclass
class EffectorInfo:
    """Per-tick snapshot of a rigid body.

    local_to_world maps the body's local unit cube [-0.5, 0.5]³ onto
    its oriented bounding box; bounds_center / bounds_size describe the
    world-space axis-aligned box around it.
    """
    local_to_world: np.ndarray
    world_to_local: np.ndarray
    linear_velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    angular_velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    bounds_center: np.ndarray = field(default_factory=lambda: np.zeros(3))
    bounds_size: np.ndarray = field(default_factory=lambda: np.zeros(3))
    stiffness: float = 1000.0
    viscosity: float = 1.0

    @staticmethod
    def from_transform(position, size, rotation=None, linear_velocity=(0.0, 0.0, 0.0),
                       angular_velocity=(0.0, 0.0, 0.0), stiffness: float = 1000.0,
                       viscosity: float = 1.0) -> 'EffectorInfo':
        """Build a snapshot from a box pose.

        Args:
            position: Box center in world space
            size: Box edge lengths
            rotation: 3x3 rotation matrix (identity if None)
            linear_velocity: Velocity of the box center
            angular_velocity: Angular velocity (rad/s, world frame)
            stiffness: Repulsion stiffness, > 0
            viscosity: Boundary viscosity, >= 0
        """
        rotation = np.eye(3) if rotation is None else np.asarray(rotation, dtype=np.float64)
        basis = rotation * np.asarray(size, dtype=np.float64)[np.newaxis, :]

        local_to_world = np.eye(4)
        local_to_world[:3, :3] = basis
        local_to_world[:3, 3] = position

        # Half extent of the world AABB around the rotated box
        half = 0.5 * np.abs(basis).sum(axis=1)
        return EffectorInfo(
            local_to_world=local_to_world,
            world_to_local=np.linalg.inv(local_to_world),
            linear_velocity=np.asarray(linear_velocity, dtype=np.float64),
            angular_velocity=np.asarray(angular_velocity, dtype=np.float64),
            bounds_center=np.asarray(position, dtype=np.float64),
            bounds_size=2.0 * half,
            stiffness=float(stiffness),
            viscosity=float(viscosity),
        )

    @property
    def origin(self) -> np.ndarray:
        """Pivot of the body (translation of local_to_world)."""
        return np.asarray(self.local_to_world, dtype=np.float64)[:3, 3]

    @property
    def volume(self) -> float:
        """Volume of the oriented box."""
        return float(abs(np.linalg.det(np.asarray(self.local_to_world)[:3, :3])))

    def velocity_at(self, points: np.ndarray) -> np.ndarray:
        """Rigid velocity v + ω × (p - origin) at world points."""
        arm = np.asarray(points, dtype=np.float64) - self.origin
        return self.linear_velocity + np.cross(self.angular_velocity, arm)

    def validate(self) -> list:
        problems = []
        if not self.stiffness > 0:
            problems.append(f"stiffness must be > 0, got {self.stiffness}")
        if self.viscosity < 0:
            problems.append(f"viscosity must be >= 0, got {self.viscosity}")
        if np.asarray(self.local_to_world).shape != (4, 4):
            problems.append("local_to_world must be 4x4")
        return problems


@runtime_checkable
class ParticleEffector(Protocol):
    """Rigid body that exchanges forces with the fluid."""

    def get_effector_info(self) -> EffectorInfo:
        ...

    def apply_forces(self, force: np.ndarray, torque: np.ndarray) -> None:
        ...


@dataclass
class EffectorFeedback:
    """Force and torque for one effector after a tick."""
    force: np.ndarray
    torque: np.ndarray
    submerged_samples: int = 0
    total_samples: int = 0
    repelled_particles: int = 0

    @property
    def submerged_fraction(self) -> float:
        if self.total_samples == 0:
            return 0.0
        return self.submerged_samples / self.total_samples


def _to_world(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    matrix = np.asarray(matrix, dtype=np.float64)
    return points @ matrix[:3, :3].T + matrix[:3, 3]


def effector_sample_points(info: EffectorInfo, resolution: int) -> np.ndarray:
    """World positions of a res³ grid of cell centers inside the body."""
    ticks = (np.arange(resolution, dtype=np.float64) + 0.5) / resolution - 0.5
    gx, gy, gz = np.meshgrid(ticks, ticks, ticks, indexing='ij')
    local = np.column_stack((gx.ravel(), gy.ravel(), gz.ravel()))
    return _to_world(info.local_to_world, local)


def compute_buoyancy(info: EffectorInfo, points: np.ndarray, sample_density: np.ndarray,
                     rest_density: float, gravity: np.ndarray,
                     submersion_ratio: float = 0.5) -> EffectorFeedback:
    """Buoyancy from density samples taken inside the body.

    Every sample whose fluid density exceeds submersion_ratio *
    rest_density displaces its share of the body volume and is pushed
    against gravity with rest_density * |g| * V_sample. Torque is taken
    about the body origin.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    n_samples = len(points)
    submerged = np.asarray(sample_density) > submersion_ratio * rest_density
    n_submerged = int(np.count_nonzero(submerged))

    feedback = EffectorFeedback(np.zeros(3), np.zeros(3), n_submerged, n_samples)
    g = np.asarray(gravity, dtype=np.float64)
    g_mag = float(np.linalg.norm(g))
    if n_submerged == 0 or g_mag == 0.0:
        return feedback

    sample_volume = info.volume / n_samples
    per_sample = -(g / g_mag) * (rest_density * g_mag * sample_volume)

    arms = points[submerged] - info.origin
    feedback.force = per_sample * n_submerged
    feedback.torque = np.cross(arms, per_sample).sum(axis=0)
    return feedback


def apply_effector_repulsion(particles: ParticleArrays, info: EffectorInfo) -> int:
    """Push fluid particles out of the effector's oriented box.

    Adds stiffness * penetration along the nearest face normal and
    subtracts viscosity * (v - v_body) to particles.acceleration.

    Returns:
        Number of particles inside the box
    """
    fluid = particles.fluid_indices()
    if len(fluid) == 0:
        return 0

    pos = particles.position[fluid].astype(np.float64)

    # World AABB cull
    half = 0.5 * np.asarray(info.bounds_size, dtype=np.float64)
    near = np.all(np.abs(pos - info.bounds_center) <= half, axis=1)
    if not near.any():
        return 0
    idx, pos = fluid[near], pos[near]

    # Oriented box test in local space
    local = _to_world(info.world_to_local, pos)
    inside = np.all(np.abs(local) <= 0.5, axis=1)
    if not inside.any():
        return 0
    idx, pos, local = idx[inside], pos[inside], local[inside]

    # Penetration to each face pair, in world units
    basis = np.asarray(info.local_to_world, dtype=np.float64)[:3, :3]
    axis_length = np.linalg.norm(basis, axis=0)
    depth = (0.5 - np.abs(local)) * axis_length
    axis = np.argmin(depth, axis=1)
    rows = np.arange(len(idx))
    penetration = depth[rows, axis]

    side = np.where(local[rows, axis] < 0.0, -1.0, 1.0)
    normal = (basis[:, axis] / axis_length[axis]).T * side[:, np.newaxis]

    rel_vel = particles.velocity[idx].astype(np.float64) - info.velocity_at(pos)
    accel = info.stiffness * penetration[:, np.newaxis] * normal - info.viscosity * rel_vel
    particles.acceleration[idx] += accel.astype(np.float32)
    return len(idx)
