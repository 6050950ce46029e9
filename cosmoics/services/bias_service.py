"""
Bootstrapped velocity bias of a halo catalog against the matter velocity field.
"""
import logging
import os
from typing import List, Optional
import jax
import jax.numpy as jnp
import numpy as np

from ..core.config import BiasConfig
from ..core.data_models import BootstrapStatistics, HaloCatalog
from ..core.decomposition import allreduce_grid
from ..core.kernels import derivative_kernel, inverse_poisson_kernel
from ..core.mass_assignment import deposit, density_contrast
from ..core.power_spectrum import cross_power, auto_power, summarize_bootstrap, format_bias_report
from ..util.log_util import parprint
from .grid_io import read_grid
from .grid_service import GridManager, FFTProcessor
from .transfer_service import TransferService

logger = logging.getLogger(__name__)

AXES = 'xyz'


def velocity_grid_paths(basename: str) -> List[str]:
    """
    File names of the three matter velocity grids.

    A basename containing '{axis}' is formatted with x, y and z; otherwise
    '_x', '_y' and '_z' are appended.
    """
    if '{axis}' in basename:
        names = [basename.format(axis=a) for a in AXES]
    else:
        names = [f"{basename}_{a}" for a in AXES]
    return [n if n.endswith('.hdf5') else n + '.hdf5' for n in names]


class VelocityBiasEstimator:
    """
    Bootstrap estimate of the halo velocity bias.

    In every iteration each halo in the mass range is kept with probability
    1 / num_samples. The kept halos are deposited with TSC as a number
    density and a momentum density, and the momentum spectra are compared
    with the matter velocity field, mapped through
    T_theta / T_delta, the inverse Laplacian and a derivative.
    """

    def __init__(self, grid_manager: GridManager, transfer_service: TransferService,
                 config: BiasConfig):
        self.grid_manager = grid_manager
        self.fft_processor = FFTProcessor(grid_manager)
        self.transfer_service = transfer_service
        self.config = config
        self.mean_total_weight = 0.0
        self.mean_total_mass = 0.0

    def matter_velocity_spectra(self, grids_m) -> List[jnp.ndarray]:
        """Half spectra of the mapped matter velocity components."""
        ts = self.transfer_service
        cfg = self.config
        spectra = []
        for dim in range(3):
            kernels = [
                ts.transfer(cfg.transfer_function_theta),
                ts.inverse_transfer(cfg.transfer_function_delta),
                inverse_poisson_kernel(),
                derivative_kernel(dim),
            ]
            spectra.append(self.fft_processor.apply_kernels(
                self.fft_processor.forward_transform(grids_m[dim]), kernels))
        return spectra

    def _halo_grids(self, positions, velocities, weights):
        """Number density contrast and momentum grids p / nbar of the selected halos."""
        gm = self.grid_manager
        N, boxlen = gm.N, gm.boxlen

        # Each process deposits every size-th halo; the grids are summed below
        share = slice(gm.slab.rank, None, gm.slab.size)
        positions, velocities, weights = positions[share], velocities[share], weights[share]

        total_weight = float(np.sum(weights))
        if gm.comm is not None:
            total_weight = gm.comm.allreduce(total_weight)

        rho = allreduce_grid(deposit(positions, weights, N, boxlen, 'tsc'), gm.comm)
        delta_h = density_contrast(rho, total_weight, boxlen)

        nbar = total_weight / boxlen ** 3
        momentum = [
            allreduce_grid(deposit(positions, weights * velocities[:, dim], N, boxlen, 'tsc'), gm.comm) / nbar
            for dim in range(3)
        ]
        return delta_h, momentum, total_weight

    def run(self, catalog: HaloCatalog, grids_m, print_report: bool = True) -> BootstrapStatistics:
        """
        Run the bootstrap and summarize it.

        Parameters:
        -----------
        catalog : HaloCatalog
            Halos in the units of the catalog; positions are scaled by
            (1 + redshift), velocities divided by velocity_conversion
        grids_m : sequence of 3 arrays
            Matter velocity grids on the managed grid
        print_report : bool
            Print the two report tables on the root process

        Returns:
        --------
        BootstrapStatistics
            Statistics of the bins with more than one mode
        """
        gm = self.grid_manager
        cfg = self.config
        grid = gm.grid
        bins, num_samples = cfg.bins, cfg.num_samples

        selected = catalog.select_mass_range(cfg.M_min, cfg.M_max)
        positions = jnp.asarray(catalog.positions[selected] * (1.0 + cfg.redshift))
        velocities = jnp.asarray(catalog.velocities[selected] / cfg.velocity_conversion)
        masses = catalog.mass[selected]
        logger.info("Including %d of %d halos with M in (%e, %e)",
                    positions.shape[0], len(catalog), cfg.M_min, cfg.M_max)

        f_vm = self.matter_velocity_spectra(grids_m)
        vm_real = [self.fft_processor.inverse_transform(f) for f in f_vm]

        cross = np.zeros((num_samples, bins))
        halo_self = np.zeros((num_samples, bins))
        matter_self = np.zeros((num_samples, bins))
        reconstructed = np.zeros((num_samples, bins))
        k = counts = None

        key = jax.random.PRNGKey(cfg.seed)
        self.mean_total_weight = 0.0
        self.mean_total_mass = 0.0

        for ITER in range(num_samples):
            logger.info("Iteration %03d/%03d]", ITER, num_samples)
            draw = jax.random.randint(jax.random.fold_in(key, ITER), (positions.shape[0],), 0, num_samples)
            weights = jnp.where(draw == 0, 1.0, 0.0)

            delta_h, momentum, total_weight = self._halo_grids(positions, velocities, weights)
            self.mean_total_weight += total_weight / num_samples
            self.mean_total_mass += float(np.sum(masses * np.asarray(weights))) / num_samples

            for dim in range(3):
                f_ph = self.fft_processor.forward_transform(momentum[dim])

                pk = cross_power(grid, f_ph, f_vm[dim], bins)
                k, counts = pk.k, pk.counts
                cross[ITER] += np.asarray(pk.power)
                halo_self[ITER] += np.asarray(auto_power(grid, f_ph, bins).power)
                p_mm = np.asarray(auto_power(grid, f_vm[dim], bins).power)
                matter_self[ITER] += p_mm

                f_dhvm = self.fft_processor.forward_transform(vm_real[dim] * delta_h)
                reconstructed[ITER] += p_mm + np.asarray(cross_power(grid, f_dhvm, f_vm[dim], bins).power)

        logger.info("Mean total weight: %e", self.mean_total_weight)
        logger.info("Mean total mass: %e", self.mean_total_mass)

        stats = summarize_bootstrap(np.asarray(k), np.asarray(counts), cross, halo_self,
                                    matter_self, reconstructed)
        if print_report and gm.is_root:
            parprint(format_bias_report(stats))
        return stats


def read_matter_velocity_grids(basename: str, N: Optional[int] = None,
                               boxlen: Optional[float] = None) -> List[np.ndarray]:
    grids = []
    for path in velocity_grid_paths(basename):
        logger.info("Reading input array '%s'", os.path.basename(path))
        grids.append(read_grid(path, N, boxlen)[0])
    return grids
