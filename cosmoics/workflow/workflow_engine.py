"""
Main workflow engine for orchestrating simulation execution.
"""
import logging
from time import time
from typing import List, Optional

from ..core.config import SimulationConfig
from ..core.data_models import SimulationContext, SimulationResult
from ..core.exceptions import ConfigurationError
from ..util.log_util import log_wrapper, summarizetime
from .simulation_steps import (
    SimulationStep,
    NoiseGenerationStep,
    PerturbationGridStep,
    SPTStep,
    PotentialGradientStep,
    ParticleGenerationStep
)

logger = logging.getLogger(__name__)

class WorkflowEngine:
    """Runs the initial-conditions pipeline as an ordered list of steps."""

    def __init__(self, config: SimulationConfig, comm=None):
        self.config = config
        self.context = SimulationContext(config)
        self.context.set('comm', comm)
        self.steps = self._build_pipeline()
        self._step_map = {step.name: step for step in self.steps}

    def execute(self, until_step: Optional[str] = None) -> SimulationResult:
        """Execute the steps up to and including `until_step` ('all' runs everything)."""
        if until_step is None:
            until_step = self.config.simulation.final_step

        if until_step == 'all':
            target_steps = self.steps
        else:
            target_steps = self._get_steps_until(until_step)

        self.context.set('times', {'t0': time()})
        step_results = []

        for i, step in enumerate(target_steps):
            logger.debug("Processing step %d/%d: %s", i + 1, len(target_steps), step.name)
            if not step.validate_prerequisites(self.context):
                message = f"Prerequisites not met for step {step.name}"
                logger.error(message)
                return SimulationResult(
                    success=False,
                    final_step=step.name,
                    step_results=step_results,
                    context=self.context,
                    message=message
                )

            result = step.execute(self.context)
            step_results.append(result)
            log_wrapper(logger, "Step %s: %s", step.name, result.message,
                        level="ics_info" if result.success else "ics_warn")

            if not result.success:
                return SimulationResult(
                    success=False,
                    final_step=step.name,
                    step_results=step_results,
                    context=self.context,
                    message=f"Failed at step {step.name}: {result.message}"
                )

        gm = self.context.get('grid_manager')
        if gm is not None:
            summarizetime(None, self.context.get('times'), gm.comm, gm.slab.rank)

        return SimulationResult(
            success=True,
            final_step=target_steps[-1].name,
            step_results=step_results,
            context=self.context,
            message="Simulation completed successfully"
        )

    def _build_pipeline(self) -> List[SimulationStep]:
        """Build the ordered list of simulation steps."""
        return [
            NoiseGenerationStep(),
            PerturbationGridStep(),
            SPTStep(),
            PotentialGradientStep(),
            ParticleGenerationStep()
        ]

    def _get_steps_until(self, step_name: str) -> List[SimulationStep]:
        """Get all steps up to and including the named step."""
        if step_name not in self._step_map:
            raise ConfigurationError(f"Unknown step: {step_name}")

        target_steps = []
        for step in self.steps:
            target_steps.append(step)
            if step.name == step_name:
                break
        return target_steps
