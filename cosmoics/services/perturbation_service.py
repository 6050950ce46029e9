"""
Perturbation grid service: Gaussian field, density and velocity grids,
potentials and their gradients.
"""
import gc
import logging
import os
from typing import Optional, Tuple
import jax.numpy as jnp

from ..core.config import CosmologicalParameters, ParticleType
from ..core.kernels import bare_power_kernel, derivative_kernel, inverse_poisson_kernel
from .grid_io import write_grid
from .grid_service import GridManager, NoiseGenerator, FFTProcessor
from .transfer_service import TransferService

logger = logging.getLogger(__name__)

AXES = 'xyz'

def grid_path(output_dir: str, name: str, identifier: Optional[str] = None,
              axis: Optional[int] = None) -> str:
    """File name of an exported grid, e.g. displacement_x_cdm.hdf5."""
    parts = [name]
    if axis is not None:
        parts.append(AXES[axis])
    if identifier is not None:
        parts.append(identifier)
    return os.path.join(output_dir, '_'.join(parts) + '.hdf5')

class PerturbationCalculator:
    """Builds the grids from which particles are displaced and given velocities."""

    def __init__(self, grid_manager: GridManager, transfer_service: TransferService,
                 cosmology: CosmologicalParameters):
        self.grid_manager = grid_manager
        self.transfer_service = transfer_service
        self.cosmology = cosmology
        self.fft_processor = FFTProcessor(grid_manager)
        self.noise_generator = NoiseGenerator(grid_manager)

    def primordial_field(self, seed: int) -> jnp.ndarray:
        """Half spectrum of a Gaussian field with the primordial power spectrum."""
        grid = self.grid_manager.grid
        grf_k = self.noise_generator.generate_complex_noise(seed)
        kernel = bare_power_kernel(self.cosmology, grid.white_noise_power)
        return self.fft_processor.apply_kernels(grf_k, [kernel])

    def perturbation_grids(self, primordial_k: jnp.ndarray,
                           ptype: ParticleType) -> Tuple[Optional[jnp.ndarray], Optional[jnp.ndarray]]:
        """
        Real-space density contrast and velocity divergence of one particle type.

        A grid whose transfer function title is empty is skipped and
        returned as None.
        """
        ts = self.transfer_service
        grids = []
        for title in (ptype.transfer_function_density, ptype.transfer_function_velocity):
            if not title:
                grids.append(None)
                continue
            field_k = self.fft_processor.apply_kernels(primordial_k, [ts.transfer(title)])
            grids.append(self.fft_processor.inverse_transform(field_k))
            del field_k
        gc.collect()
        return grids[0], grids[1]

    def potential_gradient(self, source: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray]:
        """
        Gradient of the potential phi with laplacian(phi) = source.

        For the density this is minus the Zel'dovich displacement, for the
        velocity divergence it is the velocity.
        """
        potential_k = self.fft_processor.apply_kernels(
            self.fft_processor.forward_transform(source), [inverse_poisson_kernel()])

        gradient = tuple(
            self.fft_processor.inverse_transform(
                self.fft_processor.apply_kernels(potential_k, [derivative_kernel(axis)]))
            for axis in range(3)
        )
        del potential_k
        gc.collect()
        return gradient

    def export(self, path: str, field: jnp.ndarray):
        if self.grid_manager.is_root:
            write_grid(path, field, self.grid_manager.boxlen, self.grid_manager.chunks)
