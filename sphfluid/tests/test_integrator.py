"""
Tests for time integration and the box boundary response.
"""

import numpy as np
import pytest

from sphfluid import api
from sphfluid.core.config import SimulationConfig
from sphfluid.core.particles import ParticleArrays
from sphfluid.simulation import create_simulation


class TestIntegration:

    def test_single_particle_free_fall(self, backend):
        """One isolated particle under gravity for one 0.02 s tick."""
        config = SimulationConfig(target_particle_count=1, boundary_mode="clamp",
                                  backend=backend)
        sim = create_simulation("gpu", config)
        assert sim.setup().ok
        y0 = float(sim.particles.position[0, 1])

        sim.step(0.02)

        assert sim.particles.velocity[0, 1] == pytest.approx(-0.1962, rel=1e-5)
        assert sim.particles.position[0, 1] - y0 == pytest.approx(-0.003924, abs=1e-6)
        np.testing.assert_allclose(sim.particles.velocity[0, [0, 2]], 0.0)

    def test_semi_implicit_order(self, backend):
        """Position uses the updated velocity."""
        config = SimulationConfig(boundary_mode="particles", backend=backend)
        particles = ParticleArrays.from_positions(np.zeros((1, 3)))
        particles.velocity[0] = [1.0, 0.0, 0.0]
        particles.acceleration[0] = [10.0, 0.0, 0.0]

        api.integrate(particles, 0.1, config)

        assert particles.velocity[0, 0] == pytest.approx(2.0)
        assert particles.position[0, 0] == pytest.approx(0.2)

    def test_boundary_particles_not_integrated(self, backend):
        config = SimulationConfig(backend=backend)
        particles = ParticleArrays.from_positions(np.zeros((1, 3)), boundary=np.ones((1, 3)))
        particles.acceleration[:] = [0.0, -9.81, 0.0]

        api.integrate(particles, 0.02, config)

        np.testing.assert_array_equal(particles.position[0], [1.0, 1.0, 1.0])
        np.testing.assert_array_equal(particles.velocity[0], 0.0)


class TestClampBoundary:

    @pytest.fixture
    def moving_particles(self, rng):
        positions = rng.uniform(-0.45, 0.45, size=(200, 3))
        particles = ParticleArrays.from_positions(positions)
        particles.velocity[:] = rng.uniform(-30.0, 30.0, size=(200, 3))
        return particles

    def test_containment(self, backend, moving_particles):
        config = SimulationConfig(boundary_mode="clamp", backend=backend)
        api.integrate(moving_particles, 0.02, config)

        pos = moving_particles.position
        lo, hi = config.min_bounds, config.max_bounds
        assert np.all(pos[:, 0] >= lo[0]) and np.all(pos[:, 0] <= hi[0])
        assert np.all(pos[:, 2] >= lo[2]) and np.all(pos[:, 2] <= hi[2])
        assert np.all(pos[:, 1] >= lo[1])

    def test_open_top(self, backend):
        config = SimulationConfig(boundary_mode="clamp", backend=backend)
        particles = ParticleArrays.from_positions(np.array([[0.0, 0.49, 0.0]]))
        particles.velocity[0] = [0.0, 5.0, 0.0]

        api.integrate(particles, 0.02, config)

        assert particles.position[0, 1] > config.max_bounds[1]
        assert particles.velocity[0, 1] == pytest.approx(5.0)

    def test_reflect_and_damp(self, backend):
        config = SimulationConfig(boundary_mode="clamp", backend=backend, boundary_damping=0.4)
        particles = ParticleArrays.from_positions(np.array([[0.49, -0.49, 0.0]]))
        particles.velocity[0] = [5.0, -5.0, 1.0]

        api.integrate(particles, 0.02, config)

        assert particles.position[0, 0] == pytest.approx(0.5)
        assert particles.position[0, 1] == pytest.approx(-0.5)
        assert particles.velocity[0, 0] == pytest.approx(-2.0)
        assert particles.velocity[0, 1] == pytest.approx(2.0)
        assert particles.velocity[0, 2] == pytest.approx(1.0)

    def test_particle_mode_does_not_clamp(self, backend):
        config = SimulationConfig(boundary_mode="particles", backend=backend)
        particles = ParticleArrays.from_positions(np.array([[0.49, 0.0, 0.0]]))
        particles.velocity[0] = [5.0, 0.0, 0.0]

        api.integrate(particles, 0.02, config)

        assert particles.position[0, 0] == pytest.approx(0.59)


class TestDeterminism:

    def test_repeated_runs_identical(self, backend, small_config):
        config = small_config.replace(backend=backend)
        results = []
        for _ in range(2):
            sim = create_simulation("gpu", config)
            assert sim.setup().ok
            for _ in range(3):
                sim.step(0.005)
            results.append(sim.particles.position.copy())
            sim.teardown()
        np.testing.assert_array_equal(results[0], results[1])
