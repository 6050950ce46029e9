"""
High-level API module providing clean interfaces for simulation creation and execution.
"""
from .factory import SimulationFactory
from .simulation import InitialConditionsSimulation, VelocityBiasAnalysis

__all__ = [
    'SimulationFactory',
    'InitialConditionsSimulation',
    'VelocityBiasAnalysis'
]
