"""
cosmoics: JAX-accelerated generation of cosmological initial conditions.

- cosmoics.core: spectral grids, Fourier kernels, transfer splines, Gaussian
  fields, mass assignment and power spectra
- cosmoics.services: grid files, perturbation grids, SPT corrections,
  particles, output and velocity bias analysis
- cosmoics.workflow: the ordered pipeline steps
- cosmoics.api: high-level entry points
"""
from .core.config import (
    SimulationConfig, CosmologicalParameters, GridConfiguration, ParticleType,
    SimulationParameters, OutputConfig, BiasConfig, Units, TransferConventions
)
from .api import SimulationFactory, InitialConditionsSimulation, VelocityBiasAnalysis

__version__ = "0.1.0"

__all__ = [
    'SimulationConfig',
    'CosmologicalParameters',
    'GridConfiguration',
    'ParticleType',
    'SimulationParameters',
    'OutputConfig',
    'BiasConfig',
    'Units',
    'TransferConventions',
    'SimulationFactory',
    'InitialConditionsSimulation',
    'VelocityBiasAnalysis',
]
