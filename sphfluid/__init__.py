"""SPH (Smoothed Particle Hydrodynamics) fluid simulation with rigid-body coupling."""

from . import core
from . import physics
from . import scenarios

# Import API to trigger backend registration
from . import api

from .api import (
    compute_density,
    compute_pressure,
    compute_forces,
    sample_density,
    integrate,
)
from .core import (
    Backend,
    ParticleArrays,
    ParticleType,
    SetupResult,
    SetupStatus,
    SimulationConfig,
    auto_select_backend,
    list_backends,
)
from .physics import EffectorFeedback, EffectorInfo, ParticleEffector
from .simulation import (
    BruteForceSimulation,
    DrawArgs,
    GridSimulation,
    InstancedRenderHandoff,
    ParticleSimulation,
    ScreenSpaceFluidSimulation,
    ScreenSpaceRenderHandoff,
    SimulationContext,
    SimulationType,
    create_simulation,
)

__version__ = "0.1.0"

__all__ = [
    # Modules
    'core',
    'physics',
    'scenarios',

    # Stage functions
    'compute_density',
    'compute_pressure',
    'compute_forces',
    'sample_density',
    'integrate',

    # Backend management
    'Backend',
    'auto_select_backend',
    'list_backends',

    # Core classes
    'ParticleArrays',
    'ParticleType',
    'SetupResult',
    'SetupStatus',
    'SimulationConfig',

    # Coupling
    'EffectorFeedback',
    'EffectorInfo',
    'ParticleEffector',

    # Simulations
    'BruteForceSimulation',
    'DrawArgs',
    'GridSimulation',
    'InstancedRenderHandoff',
    'ParticleSimulation',
    'ScreenSpaceFluidSimulation',
    'ScreenSpaceRenderHandoff',
    'SimulationContext',
    'SimulationType',
    'create_simulation',
]
