"""
Transfer function tables and their interpolation.

A table holds named functions T(tau, k) on a rectangular grid of log
conformal times and wavenumbers, together with the background density
Omega(tau) of each function's species. Tables are never modified after
loading: merges return new tables.
"""
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple
import logging
import numpy as np
import jax.numpy as jnp
from scipy.interpolate import CubicSpline

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferFunctionTable:
    """
    Tabulated transfer functions in internal units.

    Attributes:
    -----------
    titles : List[str]
        Names of the functions, e.g. 'd_cdm', 't_cdm'
    k : np.ndarray
        Increasing wavenumbers, shape (k_size,)
    log_tau : np.ndarray
        Increasing log conformal times, shape (tau_size,)
    functions : np.ndarray
        Values, shape (n_functions, tau_size, k_size)
    omega : np.ndarray
        Background densities, shape (n_functions, tau_size)
    redshift : np.ndarray, optional
        Redshift at each tabulated time, shape (tau_size,)
    """
    titles: List[str]
    k: np.ndarray
    log_tau: np.ndarray
    functions: np.ndarray
    omega: np.ndarray
    redshift: Optional[np.ndarray] = None

    def __post_init__(self):
        n, tau_size, k_size = self.functions.shape
        if len(self.titles) != n or self.omega.shape != (n, tau_size):
            raise ConfigurationError("Transfer table titles, functions and Omegas are inconsistent")
        if self.k.shape != (k_size,) or self.log_tau.shape != (tau_size,):
            raise ConfigurationError("Transfer table axes do not match the function values")
        if tau_size < 2 or k_size < 2:
            raise ConfigurationError("Transfer table needs at least two times and two wavenumbers")
        if np.any(np.diff(self.log_tau) <= 0) or np.any(np.diff(self.k) <= 0):
            raise ConfigurationError("Transfer table times and wavenumbers must be increasing")

    @property
    def n_functions(self) -> int:
        return len(self.titles)

    @property
    def tau_size(self) -> int:
        return self.log_tau.shape[0]

    @property
    def k_size(self) -> int:
        return self.k.shape[0]

    @classmethod
    def from_table_units(cls, titles, k, log_tau, functions, omega, redshift=None,
                         conventions=None, units=None, h: float = 1.0) -> 'TransferFunctionTable':
        """
        Build a table from values in the units of the file.

        Wavenumbers are converted with k = k_file * h^h_exponent * U_L / U_T and
        values with T = sign * T_file * k^(-k_exponent).
        """
        k = np.asarray(k, dtype=np.float64)
        functions = np.asarray(functions, dtype=np.float64)
        if conventions is not None:
            unit_length = units.unit_length_metres if units is not None else conventions.unit_length_metres
            k = k * h ** conventions.h_exponent * unit_length / conventions.unit_length_metres
            functions = conventions.sign * functions * k[None, None, :] ** (-conventions.k_exponent)
        return cls(
            titles=list(titles),
            k=k,
            log_tau=np.asarray(log_tau, dtype=np.float64),
            functions=functions,
            omega=np.asarray(omega, dtype=np.float64),
            redshift=None if redshift is None else np.asarray(redshift, dtype=np.float64)
        )

    def find_title(self, title: str) -> int:
        try:
            return self.titles.index(title)
        except ValueError:
            raise ConfigurationError(f"Transfer function '{title}' not found in table") from None

    def present_day_omega(self, title: str) -> float:
        """Background density at the last tabulated time."""
        return float(self.omega[self.find_title(title), -1])

    def merge_transfer_functions(self, title_a: str, title_b: str,
                                 weight_a: float, weight_b: float) -> 'TransferFunctionTable':
        """Return a table where function a is replaced by weight_a * a + weight_b * b."""
        ia, ib = self.find_title(title_a), self.find_title(title_b)
        functions = self.functions.copy()
        functions[ia] = weight_a * self.functions[ia] + weight_b * self.functions[ib]
        return replace(self, functions=functions)

    def merge_background_densities(self, title_a: str, title_b: str,
                                   weight_a: float, weight_b: float) -> 'TransferFunctionTable':
        """Return a table where Omega of a is replaced by weight_a * Omega_a + weight_b * Omega_b."""
        ia, ib = self.find_title(title_a), self.find_title(title_b)
        omega = self.omega.copy()
        omega[ia] = weight_a * self.omega[ia] + weight_b * self.omega[ib]
        return replace(self, omega=omega)

    def merge_species(self, density_a: str, density_b: str,
                      theta_a: str, theta_b: str) -> 'TransferFunctionTable':
        """
        Merge species b into species a, weighted by present-day Omega.

        Density and velocity functions of a become the weighted averages and
        the background density of a becomes the sum of both.
        """
        omega_a = self.present_day_omega(density_a)
        omega_b = self.present_day_omega(density_b)
        total = omega_a + omega_b
        if total <= 0:
            raise ConfigurationError(f"Cannot merge '{density_a}' and '{density_b}' with zero density")
        weight_a, weight_b = omega_a / total, omega_b / total

        logger.info("Merging '%s' into '%s' with weights [%f, %f]", density_b, density_a, weight_a, weight_b)

        merged = self.merge_transfer_functions(density_a, density_b, weight_a, weight_b)
        merged = merged.merge_transfer_functions(theta_a, theta_b, weight_a, weight_b)
        return merged.merge_background_densities(density_a, density_b, 1.0, 1.0)

    def log_tau_at_redshift(self, z: float) -> float:
        """Log conformal time at redshift z, clamped to the tabulated range."""
        if self.redshift is None:
            raise ConfigurationError("Transfer table has no redshift column")
        # redshift decreases with time, np.interp needs increasing abscissae
        return float(np.interp(z, self.redshift[::-1], self.log_tau[::-1]))


class TransferColumn:
    """
    T(k) at one fixed time: a natural cubic spline in log k.

    Queries outside the tabulated range take the value at the nearest end.
    """

    def __init__(self, k: np.ndarray, values: np.ndarray):
        self.log_k = np.log(k)
        self.k_min = float(k[0])
        self.k_max = float(k[-1])
        self._spline = CubicSpline(self.log_k, values, bc_type='natural')

    def __call__(self, k) -> jnp.ndarray:
        kk = np.clip(np.asarray(k, dtype=np.float64), self.k_min, self.k_max)
        return jnp.asarray(self._spline(np.log(kk)))


class TransferSpline:
    """Interpolation over a TransferFunctionTable, time first, then log k."""

    def __init__(self, table: TransferFunctionTable):
        self.table = table
        self._columns = {}

    def find_tau(self, log_tau: float) -> Tuple[int, float]:
        """
        Greatest lower bound index and fractional offset of log_tau.

        Times outside the table are clamped to the first or last interval.
        """
        log_tau_table = self.table.log_tau
        if log_tau <= log_tau_table[0]:
            logger.debug("log_tau %g below the table, clamping", log_tau)
            return 0, 0.0
        if log_tau >= log_tau_table[-1]:
            logger.debug("log_tau %g above the table, clamping", log_tau)
            return self.table.tau_size - 2, 1.0

        index = int(np.searchsorted(log_tau_table, log_tau, side='right')) - 1
        u = (log_tau - log_tau_table[index]) / (log_tau_table[index + 1] - log_tau_table[index])
        return index, float(u)

    def column(self, title: str, tau_index: int, u_tau: float) -> TransferColumn:
        """Transfer function `title` at the time given by (tau_index, u_tau)."""
        index = self.table.find_title(title)
        key = (index, tau_index, u_tau)
        if key not in self._columns:
            f = self.table.functions[index]
            values = (1.0 - u_tau) * f[tau_index] + u_tau * f[tau_index + 1]
            self._columns[key] = TransferColumn(self.table.k, values)
        return self._columns[key]

    def column_at(self, title: str, log_tau: float) -> TransferColumn:
        tau_index, u_tau = self.find_tau(log_tau)
        return self.column(title, tau_index, u_tau)
