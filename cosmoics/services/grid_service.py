"""
Grid management and operations services.
"""
import logging
import jax.numpy as jnp
from typing import Sequence

from ..core.config import GridConfiguration
from ..core.decomposition import SlabDecomposition, gather_slabs
from ..core.fft_ops import SpectralGrid
from ..core.kernels import Kernel, apply_kernels
from ..core.noise import generate_complex_grf

logger = logging.getLogger(__name__)

class GridManager:
    """Grid geometry plus the slab owned by this process."""

    def __init__(self, config: GridConfiguration, comm=None):
        self.config = config
        self.N = config.N
        self.boxlen = config.boxlen
        self.chunks = config.chunks
        self.comm = comm
        self.grid = SpectralGrid(config.N, config.boxlen)
        self.slab = SlabDecomposition.from_comm(config.N, comm)

        self.rshape = self.grid.rshape
        self.cshape = self.grid.cshape
        self.dk = self.grid.dk
        self.cell_volume = self.grid.cell_volume

    @property
    def parallel(self) -> bool:
        return self.slab.size > 1

    @property
    def is_root(self) -> bool:
        return self.slab.is_root

class NoiseGenerator:
    """Generates seeded Gaussian random fields."""

    def __init__(self, grid_manager: GridManager):
        self.grid_manager = grid_manager

    def generate_complex_noise(self, seed: int) -> jnp.ndarray:
        """
        Half spectrum of unit-variance white noise on the full grid.

        Each process draws its own slab; the slabs are then gathered so
        every process holds the same field.
        """
        gm = self.grid_manager
        local = generate_complex_grf(gm.N, gm.boxlen, seed, slab=gm.slab)
        if gm.parallel:
            logger.debug("Gathering noise slabs [%d, %d) on rank %d", gm.slab.start, gm.slab.end, gm.slab.rank)
        return gather_slabs(local, gm.comm)

class FFTProcessor:
    """Normalized transforms and kernel chains on the managed grid."""

    def __init__(self, grid_manager: GridManager):
        self.grid_manager = grid_manager
        self.grid = grid_manager.grid

    def forward_transform(self, field: jnp.ndarray) -> jnp.ndarray:
        return self.grid.forward(field)

    def inverse_transform(self, field_k: jnp.ndarray) -> jnp.ndarray:
        return self.grid.backward(field_k)

    def apply_kernels(self, field_k: jnp.ndarray, kernels: Sequence[Kernel]) -> jnp.ndarray:
        return apply_kernels(self.grid, field_k, kernels)
