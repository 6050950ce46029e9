"""
Higher-order corrections to density and flux grids by grid perturbation theory.

Every intermediate grid lives on disk as a chunked grid file. Gradients,
potentials and tidal tensors are computed one full grid at a time, while
the nonlinear source terms of the next order are assembled sub-cube by
sub-cube, so only a few chunks are ever combined in memory.
"""
import gc
import logging
import os
from contextlib import ExitStack
from typing import List, Tuple
import jax.numpy as jnp
import numpy as np

from ..core.buffers import GridPool
from ..core.exceptions import NumericalError
from ..core.kernels import derivative_kernel, inverse_poisson_kernel
from .grid_io import GridFile, chunk_side, iter_chunks, map_chunks, read_grid, write_grid
from .grid_service import GridManager, FFTProcessor

logger = logging.getLogger(__name__)

AXES = 'xyz'
# Independent components of the symmetric tidal tensor
TIDAL_PAIRS = [(0, 0), (0, 1), (0, 2), (1, 1), (1, 2), (2, 2)]
# All nine (a, b) components, as indices into TIDAL_PAIRS
TIDAL_CONTRACTION = [TIDAL_PAIRS.index(tuple(sorted((a, b)))) for a in range(3) for b in range(3)]

def next_order_coefficients(n: int) -> Tuple[Tuple[float, float], Tuple[float, float]]:
    """
    Coefficients of the two source terms for order n >= 2.

    Returns ((density_s1, density_s2), (flux_s1, flux_s2)).
    """
    g = 2.0 / ((2 * n + 3) * (n - 1))
    return ((n + 0.5) * g, g), (1.5 * g, n * g)

class SPTSolver:
    """Runs a number of perturbation cycles on a density and a flux density grid."""

    def __init__(self, grid_manager: GridManager, work_dir: str, basename: str = 'spt'):
        self.grid_manager = grid_manager
        self.fft_processor = FFTProcessor(grid_manager)
        self.work_dir = work_dir
        self.basename = basename
        self.N = grid_manager.N
        self.boxlen = grid_manager.boxlen
        self.chunks = grid_manager.chunks
        side = chunk_side(self.N, self.chunks)
        self.pool = GridPool((side, side, side))
        self.aHf = None

    def _path(self, name: str, order: int) -> str:
        return os.path.join(self.work_dir, f"{self.basename}_{name}_{order:03d}.hdf5")

    def _write(self, path: str, field):
        write_grid(path, field, self.boxlen, self.chunks)

    def _derivatives(self, path: str, name: str, order: int):
        """First derivatives of the grid in `path`, written as <name>_d<axis>."""
        field_k = self.fft_processor.forward_transform(read_grid(path, self.N, self.boxlen)[0])
        for axis in range(3):
            d = self.fft_processor.inverse_transform(
                self.fft_processor.apply_kernels(field_k, [derivative_kernel(axis)]))
            self._write(self._path(f"{name}_d{AXES[axis]}", order), d)
        del field_k
        gc.collect()

    def _flux_potential_derivatives(self, order: int):
        """Velocity (gradient of the flux potential) and the six tidal components."""
        flux = read_grid(self._path('flux', order), self.N, self.boxlen)[0]
        potential_k = self.fft_processor.apply_kernels(
            self.fft_processor.forward_transform(flux), [inverse_poisson_kernel()])
        del flux

        for axis in range(3):
            v = self.fft_processor.inverse_transform(
                self.fft_processor.apply_kernels(potential_k, [derivative_kernel(axis)]))
            self._write(self._path(f"velocity_{AXES[axis]}", order), v)

        for a, b in TIDAL_PAIRS:
            t = self.fft_processor.inverse_transform(
                self.fft_processor.apply_kernels(potential_k, [derivative_kernel(a), derivative_kernel(b)]))
            self._write(self._path(f"tidal_d{AXES[a]}{AXES[b]}", order), t)

        del potential_k
        gc.collect()

    def _accumulate(self, out: np.ndarray, chunk, path_a: str, path_b: str, files: dict):
        """out += a * b on one chunk."""
        with self.pool.borrow() as a, self.pool.borrow() as b:
            files[path_a].read_chunk(chunk, a)
            files[path_b].read_chunk(chunk, b)
            out += a * b

    def _source_terms(self, order: int) -> Tuple[str, str]:
        """Assemble the two nonlinear source grids of the next order, chunk by chunk."""
        paths = set()
        pairs_s1, pairs_s2 = [], []
        for m in range(order + 1):
            l = order - m
            for d in range(3):
                pairs_s1.append((self._path(f"density_d{AXES[d]}", m), self._path(f"velocity_{AXES[d]}", l)))
                pairs_s2.append((self._path(f"flux_d{AXES[d]}", m), self._path(f"velocity_{AXES[d]}", l)))
            pairs_s1.append((self._path('density', m), self._path('flux', l)))
            for t in TIDAL_CONTRACTION:
                a, b = TIDAL_PAIRS[t]
                name = f"tidal_d{AXES[a]}{AXES[b]}"
                pairs_s2.append((self._path(name, m), self._path(name, l)))
        for pa, pb in pairs_s1 + pairs_s2:
            paths.update((pa, pb))

        source1 = self._path('source1', order)
        source2 = self._path('source2', order)

        with ExitStack() as stack:
            files = {p: stack.enter_context(GridFile(p)) for p in sorted(paths)}
            out1 = stack.enter_context(GridFile.create(source1, self.N, self.boxlen, self.chunks))
            out2 = stack.enter_context(GridFile.create(source2, self.N, self.boxlen, self.chunks))

            for chunk in iter_chunks(self.N, self.chunks):
                for out_file, pairs in ((out1, pairs_s1), (out2, pairs_s2)):
                    with self.pool.borrow() as out:
                        for pa, pb in pairs:
                            self._accumulate(out, chunk, pa, pb, files)
                        out_file.write_chunk(chunk, out)

        return source1, source2

    def next_order(self, order: int, source1: str, source2: str) -> Tuple[float, float]:
        """
        Combine the sources into the density and flux of order + 1.

        Returns the size eps of the new density and flux corrections,
        sqrt(sum(c1^2 S1^2 + c2^2 S2^2) / N^3), where each weighted source
        term contributes separately.
        """
        n = order + 2
        (d1, d2), (t1, t2) = next_order_coefficients(n)
        sums = {'density': 0.0, 'flux': 0.0}

        def combiner(name, c1, c2):
            def fn(s1, s2):
                sums[name] += float(c1 * c1 * np.sum(s1 * s1) + c2 * c2 * np.sum(s2 * s2))
                return c1 * s1 + c2 * s2
            return fn

        map_chunks([source1, source2], self._path('density', order + 1),
                   combiner('density', d1, d2), self.chunks, self.pool)
        map_chunks([source1, source2], self._path('flux', order + 1),
                   combiner('flux', t1, t2), self.chunks, self.pool)

        N3 = self.N ** 3
        return np.sqrt(sums['density'] / N3), np.sqrt(sums['flux'] / N3)

    def run(self, density, flux, cycles: int) -> Tuple[jnp.ndarray, jnp.ndarray]:
        """
        Add `cycles` orders of corrections to a density and a flux density grid.

        The flux is scaled by -1/aHf, aHf = sqrt(sum(flux^2) / sum(density^2)),
        so that both grids are comparable at first order; the corrections of
        the flux are scaled back before being added.
        """
        density = np.asarray(density, dtype=np.float64)
        flux = np.asarray(flux, dtype=np.float64)
        if cycles <= 0:
            return jnp.asarray(density), jnp.asarray(flux)

        os.makedirs(self.work_dir, exist_ok=True)

        ss_density = float(np.sum(density * density))
        ss_flux = float(np.sum(flux * flux))
        if ss_density <= 0 or not np.isfinite(ss_flux):
            raise NumericalError("SPT needs a density grid with non-zero power")
        self.aHf = np.sqrt(ss_flux / ss_density)
        logger.info("Inferred flux density to density ratio -aHf = %f", -self.aHf)

        self._write(self._path('density', 0), density)
        self._write(self._path('flux', 0), flux / -self.aHf)

        for order in range(cycles):
            self._derivatives(self._path('density', order), 'density', order)
            self._derivatives(self._path('flux', order), 'flux', order)
            self._flux_potential_derivatives(order)

            source1, source2 = self._source_terms(order)
            eps_d, eps_t = self.next_order(order, source1, source2)
            logger.info("%03d] Finished SPT cycle, source term eps (density, flux) = (%e, %e)",
                        order, eps_d, eps_t)

        # Order 0 of the flux is stored rescaled, so the whole sum is scaled back
        scale = -self.aHf
        density_total = self._path('density_total', cycles)
        flux_total = self._path('flux_total', cycles)
        map_chunks(self.order_paths('density', cycles), density_total,
                   lambda *orders: sum(orders), self.chunks, self.pool)
        map_chunks(self.order_paths('flux', cycles), flux_total,
                   lambda *orders: scale * sum(orders), self.chunks, self.pool)

        return (jnp.asarray(read_grid(density_total, self.N, self.boxlen)[0]),
                jnp.asarray(read_grid(flux_total, self.N, self.boxlen)[0]))

    def order_paths(self, name: str, cycles: int) -> List[str]:
        return [self._path(name, order) for order in range(cycles + 1)]
