"""
High-level simulation classes providing clean interfaces.
"""
from typing import Optional
import logging

from ..core.config import SimulationConfig
from ..core.data_models import BootstrapStatistics, HaloCatalog, SimulationResult
from ..core.exceptions import ConfigurationError, SimulationError
from ..core.transfers import TransferFunctionTable
from ..workflow.workflow_engine import WorkflowEngine
from ..services.grid_service import GridManager
from ..services.transfer_service import TransferService, read_transfer_table
from ..services.bias_service import VelocityBiasEstimator, read_matter_velocity_grids

logger = logging.getLogger(__name__)


class InitialConditionsSimulation:
    """Generates the perturbation grids and particles of one run."""

    def __init__(self, config: SimulationConfig, transfer_table: Optional[TransferFunctionTable] = None,
                 comm=None):
        self.config = config
        self.transfer_table = transfer_table
        self.comm = comm
        self._workflow_engine = None
        self._results = None

    def run(self, until_step: Optional[str] = None) -> SimulationResult:
        """Run the pipeline; any failing step raises SimulationError."""
        if not self.config.particle_types:
            raise ConfigurationError("No particle types configured")

        self._workflow_engine = WorkflowEngine(self.config, self.comm)
        if self.transfer_table is not None:
            self._workflow_engine.context.set('transfer_table', self.transfer_table)

        try:
            self._results = self._workflow_engine.execute(until_step)
        except ConfigurationError:
            raise
        except Exception as e:
            raise SimulationError(f"Simulation failed: {str(e)}") from e

        if not self._results.success:
            failed = self._results.step_results[-1] if self._results.step_results else None
            cause = failed.error if failed is not None else None
            raise SimulationError(self._results.message) from cause
        return self._results

    def get_results(self) -> Optional[SimulationResult]:
        return self._results

    def get_particle_file(self) -> Optional[str]:
        if self._results and self._results.success:
            return self._results.context.get('particle_file')
        return None


class VelocityBiasAnalysis:
    """Bootstrapped velocity bias of a halo catalog, as configured in config.bias."""

    def __init__(self, config: SimulationConfig, transfer_table: Optional[TransferFunctionTable] = None,
                 comm=None):
        if config.bias is None:
            raise ConfigurationError("Missing 'bias' section")
        self.config = config
        self.transfer_table = transfer_table
        self.comm = comm

    def run(self, catalog: Optional[HaloCatalog] = None, print_report: bool = True) -> BootstrapStatistics:
        config = self.config
        bias = config.bias

        table = self.transfer_table
        if table is None:
            table = read_transfer_table(config.simulation.transfer_file, config.transfer,
                                        config.units, config.cosmology.h)
        transfer_service = TransferService.for_redshift(
            table, config.cosmology.z_ini, config.simulation.merge_cdm_baryons)

        if catalog is None:
            logger.info("Reading halos from '%s'", bias.halo_file)
            catalog = HaloCatalog.read(bias.halo_file)
        logger.info("We have %d halos", len(catalog))

        grid_manager = GridManager(config.grid, self.comm)
        grids_m = read_matter_velocity_grids(bias.velocity_grid_basename, config.grid.N, config.grid.boxlen)

        estimator = VelocityBiasEstimator(grid_manager, transfer_service, bias)
        return estimator.run(catalog, grids_m, print_report)
