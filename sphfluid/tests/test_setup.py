"""
Tests for configuration handling and initial particle generation.
"""

import logging

import numpy as np
import pytest

from sphfluid.core.config import SimulationConfig
from sphfluid.core.particles import ParticleArrays, ParticleType
from sphfluid.core.sampler import (fluid_region_bounds, generate_boundary_shell,
                                   generate_particles)
from sphfluid.core.status import ConfigurationError, SetupStatus


class TestConfig:

    def test_defaults_are_valid(self):
        config = SimulationConfig()
        assert config.validate() == []
        assert config.spacing == pytest.approx(0.1 / 1.8)
        np.testing.assert_allclose(config.min_bounds, [-0.5, -0.5, -0.5])

    def test_collects_problems(self):
        config = SimulationConfig(smoothing_radius=-1.0, boundary_mode="walls")
        problems = config.validate()
        assert len(problems) == 2
        assert any("smoothing_radius" in p for p in problems)

    def test_structural_changes(self):
        config = SimulationConfig()
        assert config.structural_changes(config.replace(gravity=(0.0, 0.0, 0.0))) == []
        assert config.structural_changes(config.replace(smoothing_radius=0.2)) == []
        assert config.structural_changes(config.replace(target_particle_count=10)) == \
            ["target_particle_count"]
        assert config.structural_changes(config.replace(effector_sample_resolution=6)) == []

    def test_from_dict_accepts_lists(self):
        config = SimulationConfig.from_dict({"gravity": [0, -1, 0],
                                             "fluid_region": [[0, 0, 0], [1, 0.5, 1]]})
        assert config.gravity == (0.0, -1.0, 0.0)
        assert config.fluid_region == ((0.0, 0.0, 0.0), (1.0, 0.5, 1.0))
        assert SimulationConfig.from_dict(config.to_dict()) == config

    def test_unknown_key(self):
        with pytest.raises(TypeError):
            SimulationConfig.from_dict({"no_such_field": 1})


class TestParticleArrays:

    def test_boundary_first(self):
        particles = ParticleArrays.from_positions(np.ones((3, 3)), np.zeros((2, 3)), mass=0.5)
        assert len(particles) == 5
        assert particles.n_fluid == 3
        assert particles.n_boundary == 2
        np.testing.assert_array_equal(particles.particle_type,
                                      [ParticleType.BOUNDARY] * 2 + [ParticleType.FLUID] * 3)
        np.testing.assert_array_equal(particles.fluid_indices(), [2, 3, 4])
        assert np.all(particles.mass == 0.5)

    def test_copy_is_independent(self):
        particles = ParticleArrays.from_positions(np.zeros((2, 3)))
        clone = particles.copy()
        clone.position[0, 0] = 1.0
        assert particles.position[0, 0] == 0.0

    def test_reset_acceleration(self):
        particles = ParticleArrays.from_positions(np.zeros((2, 3)))
        particles.acceleration[:] = [0.0, -9.81, 0.0]
        particles.reset_acceleration()
        np.testing.assert_array_equal(particles.acceleration, 0.0)
        assert particles.acceleration.dtype == np.float32


class TestBoundaryShell:

    def test_layer_counts(self):
        shell = generate_boundary_shell(np.zeros(3), np.ones(3), 0.25, 2)
        assert len(shell) == 258
        assert len(np.unique(shell, axis=0)) == len(shell)

    def test_open_top(self):
        shell = generate_boundary_shell(np.zeros(3), np.ones(3), 0.25, 2)
        assert shell[:, 1].max() == pytest.approx(1.0)
        assert shell[:, 1].min() == pytest.approx(-0.25)

    def test_walls_outside_volume(self):
        shell = generate_boundary_shell(np.zeros(3), np.ones(3), 0.25, 2)
        inside = np.all((shell > 1e-6) & (shell < 1.0 - 1e-6), axis=1)
        assert not inside.any()

    def test_no_layers(self):
        assert len(generate_boundary_shell(np.zeros(3), np.ones(3), 0.25, 0)) == 0


class TestGenerateParticles:

    def test_fluid_inside_region(self, small_config):
        particles = generate_particles(small_config)
        lo, hi = fluid_region_bounds(small_config)
        fluid = particles.position[particles.fluid_mask()]
        assert len(fluid) == 400
        assert np.all(fluid >= lo.astype(np.float32) - 1e-6)
        assert np.all(fluid <= hi.astype(np.float32) + 1e-6)

    def test_lattice_fills_bottom_up(self, small_config):
        particles = generate_particles(small_config, include_boundary=False)
        y = particles.position[:, 1]
        assert len(particles) == 400
        assert y.max() < small_config.max_bounds[1]
        assert np.isclose(y.min(), y).sum() >= 81

    def test_random_sampler_is_seeded(self, small_config):
        config = small_config.replace(sampler="random")
        a = generate_particles(config)
        b = generate_particles(config)
        np.testing.assert_array_equal(a.position, b.position)
        c = generate_particles(config.replace(seed=1))
        assert not np.array_equal(a.position, c.position)

    def test_particle_cap(self, small_config, caplog):
        n_boundary = len(generate_particles(small_config.replace(target_particle_count=0)))
        config = small_config.replace(max_particles=n_boundary + 10)
        with caplog.at_level(logging.WARNING):
            particles = generate_particles(config)
        assert particles.n_fluid == 10
        assert "Particle cap" in caplog.text

    def test_lattice_shortfall(self, small_config, caplog):
        config = small_config.replace(target_particle_count=5000)
        with caplog.at_level(logging.WARNING):
            particles = generate_particles(config)
        assert particles.n_fluid == 729
        assert "lattice sites" in caplog.text

    def test_fluid_region_subbox(self):
        config = SimulationConfig(target_particle_count=100,
                                  fluid_region=((0.5, 0.0, 0.0), (1.0, 1.0, 0.5)))
        fluid = generate_particles(config).position
        fluid = fluid[-100:]
        assert np.all(fluid[:, 0] > 0.0)
        assert np.all(fluid[:, 2] < 0.0)

    def test_empty_spawn_volume(self):
        config = SimulationConfig(spawn_volume_size=(0.0, 1.0, 1.0))
        with pytest.raises(ConfigurationError) as info:
            generate_particles(config)
        assert info.value.status is SetupStatus.EMPTY_SPAWN_VOLUME
