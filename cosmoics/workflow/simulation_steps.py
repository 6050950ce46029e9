"""
Individual simulation step implementations.
"""
from abc import ABC, abstractmethod
import logging
import os
import gc

from ..core.data_models import SimulationContext, StepResult
from ..core.fft_ops import shrink_grid
from ..core.exceptions import CosmoICsError
from ..services.grid_io import write_grid
from ..services.grid_service import GridManager
from ..services.transfer_service import TransferService
from ..services.perturbation_service import PerturbationCalculator, grid_path
from ..services.spt_service import SPTSolver
from ..services.particle_service import ParticleGenerator, particle_mass, thermal_sampler_for
from ..services.output_service import ParticleWriter
from ..util.log_util import profiletime

logger = logging.getLogger(__name__)

GRID_NAME_GAUSSIAN = 'gaussian_pure'
GRID_NAME_GAUSSIAN_SMALL = 'gaussian_pure_small'
GRID_NAME_DENSITY = 'density'
GRID_NAME_THETA = 'theta'
GRID_NAME_DISPLACEMENT = 'displacement'
GRID_NAME_VELOCITY = 'velocity'

class SimulationStep(ABC):
    """Abstract base class for simulation steps."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of this step."""
        pass

    @abstractmethod
    def run(self, context: SimulationContext) -> str:
        """Do the work of the step; returns a short summary."""
        pass

    @abstractmethod
    def validate_prerequisites(self, context: SimulationContext) -> bool:
        """Check if prerequisites for this step are met."""
        pass

    def execute(self, context: SimulationContext) -> StepResult:
        """Run the step and time it; package errors into the result."""
        try:
            message = self.run(context)
        except CosmoICsError as e:
            logger.error("Step '%s' failed: %s", self.name, e)
            return StepResult(success=False, step_name=self.name,
                              message=f"{self.name} failed: {e}", error=e)

        gm = context.get('grid_manager')
        profiletime(None, self.name, context.get('times'),
                    gm.comm if gm is not None else None,
                    gm.slab.rank if gm is not None else 0)
        return StepResult(success=True, step_name=self.name, message=message)

def _export(context: SimulationContext, path: str, field):
    calc = context.get('perturbation_calculator')
    calc.export(path, field)
    context.get('exported_grids').append(path)

class NoiseGenerationStep(SimulationStep):
    """Gaussian random field with the primordial power spectrum."""

    @property
    def name(self) -> str:
        return "noise"

    def validate_prerequisites(self, context: SimulationContext) -> bool:
        return True

    def run(self, context: SimulationContext) -> str:
        config = context.config
        os.makedirs(config.output.output_dir, exist_ok=True)

        if not context.has('grid_manager'):
            context.set('grid_manager', GridManager(config.grid, context.get('comm')))
        grid_manager = context.get('grid_manager')

        if not context.has('transfer_service'):
            table = context.get('transfer_table')
            if table is None:
                transfer_service = TransferService.from_config(config, config.simulation.transfer_file)
            else:
                transfer_service = TransferService.for_redshift(
                    table, config.cosmology.z_ini, config.simulation.merge_cdm_baryons)
            context.set('transfer_service', transfer_service)

        calc = PerturbationCalculator(grid_manager, context.get('transfer_service'), config.cosmology)
        context.set('perturbation_calculator', calc)
        if not context.has('exported_grids'):
            context.set('exported_grids', [])

        primordial_k = calc.primordial_field(config.simulation.seed)
        context.set('primordial_k', primordial_k)

        gaussian = calc.fft_processor.inverse_transform(primordial_k)
        _export(context, grid_path(config.output.output_dir, GRID_NAME_GAUSSIAN), gaussian)

        M = config.grid.small_grid_size
        if M > 0:
            small_path = grid_path(config.output.output_dir, GRID_NAME_GAUSSIAN_SMALL)
            if grid_manager.is_root:
                write_grid(small_path, shrink_grid(gaussian, M), config.grid.boxlen)
                logger.info("Smaller copy (M=%d) of the Gaussian field exported to '%s'", M, small_path)
            context.get('exported_grids').append(small_path)
        return f"Generated primordial field with seed {config.simulation.seed}"

class PerturbationGridStep(SimulationStep):
    """Density and velocity divergence grids of every particle type."""

    @property
    def name(self) -> str:
        return "perturbations"

    def validate_prerequisites(self, context: SimulationContext) -> bool:
        return context.has('primordial_k')

    def run(self, context: SimulationContext) -> str:
        config = context.config
        calc = context.get('perturbation_calculator')
        primordial_k = context.pop('primordial_k')

        grids = {}
        for ptype in config.particle_types:
            density, theta = calc.perturbation_grids(primordial_k, ptype)
            for name, field in ((GRID_NAME_DENSITY, density), (GRID_NAME_THETA, theta)):
                if field is not None:
                    _export(context, grid_path(config.output.output_dir, name, ptype.identifier), field)
            grids[ptype.identifier] = (density, theta)
            logger.info("Generated perturbation grids of type '%s' (density: %s, theta: %s)",
                        ptype.identifier, density is not None, theta is not None)

        del primordial_k
        gc.collect()
        context.set('perturbation_grids', grids)
        return f"Generated perturbation grids for {len(grids)} particle types"

class SPTStep(SimulationStep):
    """Higher-order corrections of the density and theta grids."""

    @property
    def name(self) -> str:
        return "spt"

    def validate_prerequisites(self, context: SimulationContext) -> bool:
        return context.has('perturbation_grids')

    def run(self, context: SimulationContext) -> str:
        config = context.config
        cycles = config.simulation.spt_cycles
        if cycles <= 0:
            return "No SPT cycles requested"

        grid_manager = context.get('grid_manager')
        grids = context.get('perturbation_grids')
        for ptype in config.particle_types:
            density, theta = grids[ptype.identifier]
            if density is None or theta is None:
                logger.warning("Skipping SPT for type '%s', which lacks a density or theta grid",
                               ptype.identifier)
                continue
            work_dir = os.path.join(config.output.output_dir, f"spt_{ptype.identifier}")
            solver = SPTSolver(grid_manager, work_dir)
            density, theta = solver.run(density, theta, cycles)
            _export(context, grid_path(config.output.output_dir, GRID_NAME_DENSITY, ptype.identifier), density)
            _export(context, grid_path(config.output.output_dir, GRID_NAME_THETA, ptype.identifier), theta)
            grids[ptype.identifier] = (density, theta)

        return f"Applied {cycles} SPT cycles"

class PotentialGradientStep(SimulationStep):
    """Displacement and velocity grids from the density and theta potentials."""

    @property
    def name(self) -> str:
        return "potentials"

    def validate_prerequisites(self, context: SimulationContext) -> bool:
        return context.has('perturbation_grids')

    def run(self, context: SimulationContext) -> str:
        config = context.config
        calc = context.get('perturbation_calculator')
        grids = context.pop('perturbation_grids')
        output_dir = config.output.output_dir

        displacement, velocity = {}, {}
        for ptype in config.particle_types:
            density, theta = grids.pop(ptype.identifier)
            for name, source, gradients in ((GRID_NAME_DISPLACEMENT, density, displacement),
                                            (GRID_NAME_VELOCITY, theta, velocity)):
                if source is None:
                    gradients[ptype.identifier] = None
                    continue
                gradients[ptype.identifier] = calc.potential_gradient(source)
                for axis in range(3):
                    _export(context, grid_path(output_dir, name, ptype.identifier, axis),
                            gradients[ptype.identifier][axis])
            del density, theta
            gc.collect()

        context.set('displacement_grids', displacement)
        context.set('velocity_grids', velocity)
        return "Computed displacement and velocity grids"

class ParticleGenerationStep(SimulationStep):
    """Displaced particles written to the output file, chunk by chunk."""

    @property
    def name(self) -> str:
        return "particles"

    def validate_prerequisites(self, context: SimulationContext) -> bool:
        return context.has('displacement_grids') and context.has('velocity_grids')

    def run(self, context: SimulationContext) -> str:
        config = context.config
        grid_manager = context.get('grid_manager')
        transfer_service = context.get('transfer_service')
        displacement = context.pop('displacement_grids')
        velocity = context.pop('velocity_grids')

        if not grid_manager.is_root:
            return "Particles are written by the root process"

        boxlen = config.grid.boxlen
        z_ini = config.cosmology.z_ini
        a_ini = 1.0 / (1.0 + z_ini)
        path = os.path.join(config.output.output_dir, config.output.output_filename)
        logger.info("Creating output file '%s'", path)

        written = 0
        with ParticleWriter(path, config.particle_types, boxlen, z_ini) as writer:
            for ptype in config.particle_types:
                # Without a density function the background of the velocity function is used
                omega = transfer_service.omega(ptype.transfer_function_density
                                               or ptype.transfer_function_velocity)
                mass = particle_mass(omega, config.units, config.cosmology.h, boxlen, ptype.total_number)
                logger.info("Particle type '%s' has %d particles of mass %e", ptype.identifier,
                            ptype.total_number, mass)

                generator = ParticleGenerator(
                    ptype, displacement.pop(ptype.identifier), velocity.pop(ptype.identifier),
                    boxlen, mass,
                    scheme=config.simulation.interpolation_scheme,
                    thermal=thermal_sampler_for(ptype, config.units),
                    a_ini=a_ini,
                    speed_of_light=config.units.speed_of_light,
                    seed=config.simulation.seed + ptype.first_id
                )
                for chunk, particles in enumerate(generator.chunks()):
                    writer.write_chunk(ptype, chunk * ptype.chunk_size, particles)
                    written += len(particles)

        context.set('particle_file', path)
        if not config.output.keep_grids:
            for grid_file in context.get('exported_grids'):
                if os.path.exists(grid_file):
                    os.remove(grid_file)
        return f"Wrote {written} particles to {path}"
