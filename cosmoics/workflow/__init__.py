"""
Workflow engine for orchestrating simulation steps.
"""
from .workflow_engine import WorkflowEngine
from .simulation_steps import (
    SimulationStep,
    NoiseGenerationStep,
    PerturbationGridStep,
    SPTStep,
    PotentialGradientStep,
    ParticleGenerationStep
)

__all__ = [
    'WorkflowEngine',
    'SimulationStep',
    'NoiseGenerationStep',
    'PerturbationGridStep',
    'SPTStep',
    'PotentialGradientStep',
    'ParticleGenerationStep'
]
