"""
Tests for the simulation variants, render handoffs and the simulation context.
"""

import logging

import numpy as np
import pytest

from sphfluid.core.config import SimulationConfig
from sphfluid.core.status import SetupStatus
from sphfluid.physics.coupling import EffectorInfo
from sphfluid.scenarios import create_dam_break_config, create_floating_box
from sphfluid.simulation import (BruteForceSimulation, GridSimulation, ParticleSimulation,
                                 ScreenSpaceFluidSimulation, SimulationContext, SimulationType,
                                 create_simulation)


class CountingEffector:
    """Effector that records how often it is read and fed back."""

    def __init__(self, position=(0.0, 0.0, 0.0)):
        self.info = EffectorInfo.from_transform(position, (0.2, 0.2, 0.2))
        self.reads = 0
        self.feedback = []

    def get_effector_info(self) -> EffectorInfo:
        self.reads += 1
        return self.info

    def apply_forces(self, force, torque):
        self.feedback.append((np.array(force), np.array(torque)))


class TestFactory:

    def test_variants(self, small_config):
        assert isinstance(create_simulation("brute_force", small_config), BruteForceSimulation)
        assert isinstance(create_simulation(SimulationType.GPU, small_config), GridSimulation)
        assert isinstance(create_simulation("ssf", small_config), ScreenSpaceFluidSimulation)

    def test_brute_force_defaults_to_clamp(self):
        assert create_simulation("brute_force").config.boundary_mode == "clamp"
        assert create_simulation("gpu").config.boundary_mode == "particles"

    def test_protocol(self, small_config):
        for kind in SimulationType:
            assert isinstance(create_simulation(kind, small_config), ParticleSimulation)

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            create_simulation("taichi")


class TestRenderHandoff:

    def test_instanced_matrices(self, small_config):
        sim = create_simulation("gpu", small_config)
        assert sim.setup().ok
        sim.step(0.001)

        matrices = sim.get_particle_buffer()
        particles = sim.particles
        fluid = particles.fluid_mask()

        assert matrices.shape == (len(particles), 4, 4)
        assert not matrices.flags.writeable
        np.testing.assert_array_equal(matrices[:, :3, 3], particles.position)
        np.testing.assert_allclose(matrices[fluid, 0, 0], small_config.render_scale)
        np.testing.assert_array_equal(matrices[~fluid, 0, 0], 0.0)
        assert sim.get_draw_args().instance_count == len(particles)

    def test_buffer_reused_between_ticks(self, small_config):
        sim = create_simulation("gpu", small_config)
        sim.setup()
        first = sim.get_particle_buffer()
        sim.step(0.001)
        assert sim.get_particle_buffer() is first

    def test_screen_space_records(self, small_config):
        sim = create_simulation("ssf", small_config)
        assert sim.setup().ok
        sim.step(0.001)

        records = sim.get_particle_buffer()
        with pytest.raises(ValueError):
            records['density'][0] = 1.0
        np.testing.assert_array_equal(records['position'], sim.particles.position)
        np.testing.assert_array_equal(records['density'], sim.particles.density)

        args = sim.get_draw_args()
        assert args.smoothing_radius == small_config.smoothing_radius
        assert args.instance_count == 400


class TestContextLifecycle:

    def test_start_step_stop(self, small_config):
        context = SimulationContext(small_config)
        result = context.start()
        assert result.ok
        assert context.in_simulation
        assert context.step() == []
        context.stop()
        assert not context.in_simulation
        assert context.simulation.arena.released

    def test_context_manager(self, small_config):
        with SimulationContext(small_config) as context:
            assert context.in_simulation
            context.step(0.001)
        assert not context.in_simulation

    def test_effectors_read_once_and_fed_back(self, small_config):
        effector = CountingEffector()
        context = SimulationContext(small_config)
        context.register_effector(effector)
        context.register_effector(effector)
        context.start()

        feedback = context.step(0.001)
        context.step(0.001)

        assert len(feedback) == 1
        assert effector.reads == 2
        assert len(effector.feedback) == 2
        assert feedback[0].total_samples == 4 ** 3

    def test_unregister(self, small_config):
        effector = CountingEffector()
        context = SimulationContext(small_config)
        context.register_effector(effector)
        context.unregister_effector(effector)
        context.start()
        context.step(0.001)
        assert effector.reads == 0

    def test_rejects_non_effector(self, small_config):
        with pytest.raises(TypeError):
            SimulationContext(small_config).register_effector(object())

    def test_submerged_box_gets_lift(self, small_config):
        """A box inside the fluid block is pushed up."""
        effector = CountingEffector(position=(0.0, -0.15, 0.0))
        context = SimulationContext(small_config)
        context.register_effector(effector)
        context.start()

        feedback = context.step(0.001)

        assert feedback[0].submerged_samples > 0
        assert feedback[0].force[1] > 0.0
        assert feedback[0].repelled_particles > 0


class TestContextErrors:

    @pytest.mark.parametrize("kind", ["gpu", "brute_force"])
    def test_invalid_radius_disables(self, kind, caplog):
        context = SimulationContext(SimulationConfig(smoothing_radius=0.0), kind=kind)
        with caplog.at_level(logging.WARNING):
            result = context.start()
        assert result.status is SetupStatus.INVALID_CONFIG
        assert not context.in_simulation
        assert context.step() == []
        assert "Simulation disabled" in caplog.text

    def test_empty_spawn_volume(self):
        config = SimulationConfig(spawn_volume_size=(1.0, 0.0, 1.0))
        result = SimulationContext(config).start()
        assert result.status is SetupStatus.EMPTY_SPAWN_VOLUME

    def test_unknown_backend(self, small_config):
        result = SimulationContext(small_config.replace(backend="gpu")).start()
        assert result.status is SetupStatus.BACKEND_UNAVAILABLE

    def test_capacity_exceeded(self, small_config):
        result = SimulationContext(small_config.replace(max_padded_count=1024)).start()
        assert result.status is SetupStatus.CAPACITY_EXCEEDED
        assert "exceeds" in result.message


class TestReloadConfig:

    def test_hot_reload_keeps_buffers(self, small_config):
        context = SimulationContext(small_config)
        context.start()
        keys = context.simulation.grid.keys

        result = context.reload_config(small_config.replace(gravity=(0.0, 0.0, 0.0),
                                                            viscosity_mu=0.1))
        context.step(0.001)

        assert result.ok
        assert context.config.viscosity_mu == 0.1
        assert context.simulation.grid.keys is keys

    def test_radius_change_rebuilds_grid(self, small_config):
        context = SimulationContext(small_config)
        context.start()
        old_cells = context.simulation.grid.geometry.n_cells

        context.reload_config(small_config.replace(smoothing_radius=0.12))

        assert context.simulation.constants.h == 0.12
        assert context.simulation.grid.geometry.cell_size == 0.12
        assert context.simulation.grid.geometry.n_cells < old_cells
        context.step(0.001)

    def test_sample_resolution_is_hot(self, small_config):
        effector = CountingEffector(position=(0.0, -0.15, 0.0))
        context = SimulationContext(small_config)
        context.register_effector(effector)
        context.start()
        context.step(0.001)
        particles = context.particles
        position = particles.position.copy()

        context.reload_config(small_config.replace(effector_sample_resolution=2))

        assert context.particles is particles
        np.testing.assert_array_equal(context.particles.position, position)
        assert context.step(0.001)[0].total_samples == 2 ** 3

    def test_mass_change_applied(self, small_config):
        context = SimulationContext(small_config)
        context.start()
        context.reload_config(small_config.replace(particle_mass=0.03))
        assert np.all(context.particles.mass == np.float32(0.03))

    def test_structural_reload(self, small_config):
        context = SimulationContext(small_config)
        context.start()

        result = context.reload_config(small_config.replace(target_particle_count=200))

        assert result.ok
        assert context.particles.n_fluid == 200

    def test_invalid_reload_rejected(self, small_config):
        context = SimulationContext(small_config)
        context.start()
        result = context.reload_config(small_config.replace(rest_density=-1.0))
        assert result.status is SetupStatus.INVALID_CONFIG
        assert context.in_simulation
        assert context.config.rest_density == small_config.rest_density


class TestScenarios:

    def test_dam_break_config(self):
        config = create_dam_break_config(1000, backend="cpu")
        assert config.target_particle_count == 1000
        assert config.fluid_region == ((0.5, 0.0, 0.0), (1.0, 1.0, 0.5))
        assert config.validate() == []

    def test_floating_box_falls_when_dry(self):
        box = create_floating_box()
        y0 = box.position[1]
        box.apply_forces(np.zeros(3), np.zeros(3))
        box.advance(0.02)
        assert box.position[1] < y0
        assert box.linear_velocity[1] == pytest.approx(-9.81 * 0.02)

    def test_floating_box_spins_under_torque(self):
        box = create_floating_box()
        box.apply_forces(np.zeros(3), np.array([0.0, 0.0, 1.0]))
        box.advance(0.02)
        assert box.angular_velocity[2] > 0.0
        np.testing.assert_allclose(box.rotation @ box.rotation.T, np.eye(3), atol=1e-12)

    def test_box_in_running_simulation(self, small_config):
        box = create_floating_box(small_config, size=(0.1, 0.1, 0.1))
        with SimulationContext(small_config) as context:
            context.register_effector(box)
            for _ in range(2):
                context.step(0.001)
                box.advance(0.001)
        assert box.feedback_count == 2


class TestHeadless:

    def test_short_run(self):
        from sphfluid.main_headless import main

        assert main(["--particles", "200", "--steps", "2", "--backend", "cpu"]) == 0

    def test_brute_force_with_box(self):
        from sphfluid.main_headless import main

        assert main(["--variant", "brute_force", "--particles", "100", "--steps", "2",
                     "--backend", "cpu", "--with-box"]) == 0
