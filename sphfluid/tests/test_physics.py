"""
Physics validation tests for the SPH solver.

Tests physical correctness including:
- Kernel density of isolated particles
- Equation of state bounds
- Newton's third law for the pressure term
- Wall particles acting as immovable sources
"""

import numpy as np
import pytest

from sphfluid import api
from sphfluid.core.buffers import BufferArena
from sphfluid.core.config import SimulationConfig
from sphfluid.core.kernel_vectorized import KernelConstants, SPHKernels
from sphfluid.core.particles import ParticleArrays, ParticleType
from sphfluid.core.spatial_grid import GridGeometry, SpatialHashGrid
from sphfluid.physics.density_vectorized import (compute_density_brute_force,
                                                 find_pairs_brute_force, find_pairs_grid)
from sphfluid.physics.forces_vectorized import (compute_forces_from_pairs,
                                                pressure_pair_acceleration,
                                                tait_equation_of_state)


def make_grid(particles, h=0.1, backend="cpu"):
    geometry = GridGeometry(origin=(-1.0, -1.0, -1.0), dims=(20, 20, 20), cell_size=h)
    grid = SpatialHashGrid(geometry, BufferArena(), backend=backend)
    grid.build(particles.position)
    return grid


class TestDensity:

    def test_isolated_particle(self, backend):
        """With no neighbors the density is the self term m * poly6 * h⁶."""
        config = SimulationConfig(backend=backend)
        constants = KernelConstants.from_radius(0.1)
        particles = ParticleArrays.from_positions(np.array([[0.0, 0.0, 0.0], [0.5, 0.5, 0.5]]))

        grid = make_grid(particles, backend=backend)
        api.compute_density(particles, grid, constants, config)

        expected = 0.02 * constants.poly6 * 0.1 ** 6
        np.testing.assert_allclose(particles.density, [expected, expected], rtol=1e-5)

    def test_brute_force_isolated(self):
        constants = KernelConstants.from_radius(0.1)
        particles = ParticleArrays.from_positions(np.array([[0.0, 0.0, 0.0]]))
        compute_density_brute_force(particles, constants, rest_density=1000.0)
        assert particles.density[0] == pytest.approx(0.02 * constants.poly6_self, rel=1e-5)

    def test_density_floor(self):
        """A negligible sum is replaced by the rest density."""
        constants = KernelConstants.from_radius(0.1)
        particles = ParticleArrays.from_positions(np.zeros((1, 3)), mass=1e-12)
        compute_density_brute_force(particles, constants, rest_density=1000.0,
                                    density_epsilon=1e-4)
        assert particles.density[0] == 1000.0

    def test_neighbor_adds_density(self, backend):
        config = SimulationConfig(backend=backend)
        constants = KernelConstants.from_radius(0.1)
        particles = ParticleArrays.from_positions(np.array([[0.0, 0.0, 0.0], [0.05, 0.0, 0.0]]))

        grid = make_grid(particles, backend=backend)
        api.compute_density(particles, grid, constants, config)

        kernels = SPHKernels(constants)
        expected = 0.02 * (constants.poly6_self + float(kernels.poly6(0.05 ** 2)))
        np.testing.assert_allclose(particles.density, [expected, expected], rtol=1e-5)


class TestNeighborSearch:

    def test_grid_matches_brute_force(self, rng):
        positions = rng.uniform(-0.3, 0.3, size=(400, 3)).astype(np.float32)
        particles = ParticleArrays.from_positions(positions)
        grid = make_grid(particles)

        brute = find_pairs_brute_force(positions, positions, 0.1)
        gridded = find_pairs_grid(positions, positions, grid.geometry, grid.sorted_indices,
                                  grid.cell_start, grid.cell_end, 0.1)

        assert len(brute) == len(gridded)
        assert set(zip(brute.i.tolist(), brute.j.tolist())) == \
            set(zip(gridded.i.tolist(), gridded.j.tolist()))

    def test_self_pairs_included(self, rng):
        positions = rng.uniform(-0.3, 0.3, size=(20, 3))
        pairs = find_pairs_brute_force(positions, positions, 0.1)
        self_pairs = pairs.i == pairs.j
        assert self_pairs.sum() == 20

    def test_candidate_mask(self):
        positions = np.array([[0.0, 0.0, 0.0], [0.01, 0.0, 0.0]])
        pairs = find_pairs_brute_force(positions, positions, 0.1,
                                       candidates=np.array([True, False]))
        assert set(pairs.j.tolist()) == {0}


class TestPressure:

    def test_non_negative(self):
        density = np.linspace(0.0, 2000.0, 201)
        pressure = tait_equation_of_state(density, 1000.0, 2000.0, 7.0)
        assert np.all(pressure >= 0.0)
        assert pressure[0] == 0.0
        assert pressure[100] == pytest.approx(0.0)

    def test_compressed_value(self):
        pressure = tait_equation_of_state(np.array([1100.0]), 1000.0, 2000.0, 7.0)
        assert pressure[0] == pytest.approx(2000.0 * (1.1 ** 7 - 1.0))

    def test_backends(self, backend):
        config = SimulationConfig(backend=backend)
        particles = ParticleArrays.allocate(5)
        particles.density[:] = [0.0, 500.0, 1000.0, 1050.0, 1200.0]

        api.compute_pressure(particles, config)

        expected = tait_equation_of_state(particles.density, 1000.0, 2000.0, 7.0)
        np.testing.assert_allclose(particles.pressure, expected, rtol=1e-5)


class TestForces:

    def test_pressure_term_antisymmetric(self, rng):
        kernels = SPHKernels.for_radius(0.1)
        r_vec = rng.uniform(-0.05, 0.05, size=(30, 3))
        mass = np.full(30, 0.02)
        p_i, p_j = rng.uniform(0.0, 500.0, size=(2, 30))
        rho_i, rho_j = rng.uniform(900.0, 1100.0, size=(2, 30))

        f_ij = pressure_pair_acceleration(r_vec, mass, p_i, rho_i, p_j, rho_j, kernels)
        f_ji = pressure_pair_acceleration(-r_vec, mass, p_j, rho_j, p_i, rho_i, kernels)

        np.testing.assert_allclose(f_ij, -f_ji, rtol=1e-12, atol=1e-12)

    def test_two_particles_repel_equally(self, backend):
        """Two close particles at rest get equal and opposite pressure accelerations."""
        config = SimulationConfig(backend=backend, rest_density=10.0, gravity=(0.0, 0.0, 0.0))
        constants = KernelConstants.from_radius(0.1)
        particles = ParticleArrays.from_positions(np.array([[0.0, 0.0, 0.0], [0.05, 0.0, 0.0]]))

        grid = make_grid(particles, backend=backend)
        api.compute_density(particles, grid, constants, config)
        api.compute_pressure(particles, config)
        api.compute_forces(particles, grid, constants, config)

        a = particles.acceleration
        assert particles.pressure[0] > 0.0
        assert a[0, 0] < 0.0
        np.testing.assert_allclose(a[0], -a[1], rtol=1e-5, atol=1e-6)
        np.testing.assert_allclose(a[:, 1:], 0.0, atol=1e-6)

    def test_isolated_particle_feels_gravity_only(self, backend):
        config = SimulationConfig(backend=backend)
        constants = KernelConstants.from_radius(0.1)
        particles = ParticleArrays.from_positions(np.zeros((1, 3)))

        grid = make_grid(particles, backend=backend)
        api.compute_density(particles, grid, constants, config)
        api.compute_pressure(particles, config)
        api.compute_forces(particles, grid, constants, config)

        np.testing.assert_allclose(particles.acceleration[0], [0.0, -9.81, 0.0], rtol=1e-6)

    def test_boundary_particles_do_not_move(self, backend):
        config = SimulationConfig(backend=backend, rest_density=10.0)
        constants = KernelConstants.from_radius(0.1)
        particles = ParticleArrays.from_positions(np.array([[0.0, 0.03, 0.0]]),
                                                  boundary=np.array([[0.0, 0.0, 0.0]]))

        grid = make_grid(particles, backend=backend)
        api.compute_density(particles, grid, constants, config)
        api.compute_pressure(particles, config)
        api.compute_forces(particles, grid, constants, config)

        assert particles.particle_type[0] == ParticleType.BOUNDARY
        np.testing.assert_array_equal(particles.acceleration[0], 0.0)
        assert particles.acceleration[1, 1] > -9.81

    def test_viscosity_drags_towards_neighbor_velocity(self):
        constants = KernelConstants.from_radius(0.1)
        particles = ParticleArrays.from_positions(np.array([[0.0, 0.0, 0.0], [0.05, 0.0, 0.0]]))
        particles.velocity[1] = [0.0, 1.0, 0.0]

        pairs = compute_density_brute_force(particles, constants, rest_density=1e6)
        particles.pressure[:] = 0.0
        compute_forces_from_pairs(particles, pairs, constants, viscosity_mu=0.1,
                                  gravity=np.zeros(3))

        assert particles.acceleration[0, 1] > 0.0
        assert particles.acceleration[1, 1] < 0.0
        assert particles.acceleration[0, 1] == pytest.approx(-particles.acceleration[1, 1], rel=1e-6)
