"""
Factory for creating simulations with clean interfaces.
"""
from typing import Any, Dict, List, Optional
from ..core.config import (
    SimulationConfig,
    CosmologicalParameters,
    GridConfiguration,
    ParticleType,
    SimulationParameters,
    OutputConfig
)
from ..core.decomposition import get_communicator
from ..core.transfers import TransferFunctionTable
from .simulation import InitialConditionsSimulation, VelocityBiasAnalysis

class SimulationFactory:
    """Factory for creating simulations."""

    @staticmethod
    def from_config(config: SimulationConfig,
                    transfer_table: Optional[TransferFunctionTable] = None) -> InitialConditionsSimulation:
        """Create simulation from configuration object."""
        return InitialConditionsSimulation(config, transfer_table, get_communicator())

    @staticmethod
    def from_dict(params: Dict[str, Any],
                  transfer_table: Optional[TransferFunctionTable] = None) -> InitialConditionsSimulation:
        """Create simulation from a nested dictionary of configuration sections."""
        return SimulationFactory.from_config(SimulationConfig.from_dict(params), transfer_table)

    @staticmethod
    def create_initial_conditions(
        cosmology_params: CosmologicalParameters,
        grid_config: GridConfiguration,
        particle_types: List[ParticleType],
        transfer_table: Optional[TransferFunctionTable] = None,
        **kwargs
    ) -> InitialConditionsSimulation:
        """Create a simulation; remaining keyword arguments fill the simulation and output sections."""
        sim_params = SimulationParameters(**{k: v for k, v in kwargs.items()
                                             if k in SimulationParameters.__dataclass_fields__})
        output_config = OutputConfig(**{k: v for k, v in kwargs.items()
                                        if k in OutputConfig.__dataclass_fields__})

        config = SimulationConfig(
            cosmology=cosmology_params,
            grid=grid_config,
            simulation=sim_params,
            output=output_config,
            particle_types=list(particle_types)
        )
        return SimulationFactory.from_config(config, transfer_table)

    @staticmethod
    def velocity_bias(config: SimulationConfig,
                      transfer_table: Optional[TransferFunctionTable] = None) -> VelocityBiasAnalysis:
        return VelocityBiasAnalysis(config, transfer_table, get_communicator())
