"""
Transfer function table service.
"""
import logging
from typing import Optional
import h5py
import numpy as np

from ..core.config import SimulationConfig, TransferConventions, Units
from ..core.exceptions import GridFileError
from ..core.transfers import TransferFunctionTable, TransferSpline, TransferColumn
from ..core.kernels import Kernel, transfer_kernel, inverse_transfer_kernel

logger = logging.getLogger(__name__)

PERTURB_GROUP = 'Perturb'

def _decode(titles) -> list:
    return [t.decode() if isinstance(t, bytes) else str(t) for t in titles]

def read_transfer_table(path: str, conventions: Optional[TransferConventions] = None,
                        units: Optional[Units] = None, h: float = 1.0) -> TransferFunctionTable:
    """
    Read a transfer function table and convert it to internal units.

    Layout: group 'Perturb' with datasets 'Wavenumbers', 'Log conformal times',
    'Transfer functions', 'Omegas', optionally 'Redshifts', and the attribute
    'FunctionTitles'.
    """
    try:
        with h5py.File(path, 'r') as f:
            grp = f[PERTURB_GROUP]
            titles = _decode(grp.attrs['FunctionTitles'])
            k = grp['Wavenumbers'][...]
            log_tau = grp['Log conformal times'][...]
            functions = grp['Transfer functions'][...]
            omega = grp['Omegas'][...]
            redshift = grp['Redshifts'][...] if 'Redshifts' in grp else None
    except (OSError, KeyError) as e:
        raise GridFileError(f"Cannot read transfer function table '{path}': {e}") from e

    table = TransferFunctionTable.from_table_units(
        titles, k, log_tau, functions, omega, redshift,
        conventions=conventions, units=units, h=h
    )
    logger.info("Read %d transfer functions on a (%d x %d) grid from '%s'",
                table.n_functions, table.tau_size, table.k_size, path)
    return table

def write_transfer_table(path: str, table: TransferFunctionTable):
    """Write a table in internal units, readable back with identity conventions."""
    try:
        with h5py.File(path, 'w') as f:
            grp = f.create_group(PERTURB_GROUP)
            grp.attrs['FunctionTitles'] = np.array(table.titles, dtype=h5py.string_dtype())
            grp.create_dataset('Wavenumbers', data=table.k)
            grp.create_dataset('Log conformal times', data=table.log_tau)
            grp.create_dataset('Transfer functions', data=table.functions)
            grp.create_dataset('Omegas', data=table.omega)
            if table.redshift is not None:
                grp.create_dataset('Redshifts', data=table.redshift)
    except OSError as e:
        raise GridFileError(f"Cannot write transfer function table '{path}': {e}") from e

class TransferService:
    """Holds the (possibly merged) table of a run and the time it is evaluated at."""

    def __init__(self, table: TransferFunctionTable, log_tau: float):
        self.table = table
        self.spline = TransferSpline(table)
        self.log_tau = log_tau
        self.tau_index, self.u_tau = self.spline.find_tau(log_tau)

    @classmethod
    def for_redshift(cls, table: TransferFunctionTable, z: float,
                     merge_cdm_baryons: bool = False) -> 'TransferService':
        """Evaluate the table at redshift z, optionally merging baryons into cdm first."""
        if merge_cdm_baryons:
            table = table.merge_species('d_cdm', 'd_b', 't_cdm', 't_b')
        log_tau = table.log_tau_at_redshift(z)
        service = cls(table, log_tau)
        logger.info("Starting redshift z=%g at log(tau)=%g (index %d, u=%f)",
                    z, log_tau, service.tau_index, service.u_tau)
        return service

    @classmethod
    def from_config(cls, config: SimulationConfig, path: str) -> 'TransferService':
        table = read_transfer_table(path, config.transfer, config.units, config.cosmology.h)
        return cls.for_redshift(table, config.cosmology.z_ini, config.simulation.merge_cdm_baryons)

    def column(self, title: str) -> TransferColumn:
        return self.spline.column(title, self.tau_index, self.u_tau)

    def transfer(self, title: str) -> Kernel:
        return transfer_kernel(self.column(title))

    def inverse_transfer(self, title: str) -> Kernel:
        return inverse_transfer_kernel(self.column(title))

    def omega(self, title: str) -> float:
        """Background density of a species at the evaluation time, interpolated in tau."""
        i = self.table.find_title(title)
        w = self.table.omega[i]
        return float((1.0 - self.u_tau) * w[self.tau_index] + self.u_tau * w[self.tau_index + 1])
