"""
Data models for simulation results and intermediate data.
"""
from dataclasses import dataclass
from typing import Optional, Dict, Any
import h5py
import numpy as np
import jax.numpy as jnp

from .exceptions import GridFileError

@dataclass
class ParticleData:
    """One chunk of particles: (n, 3) positions and velocities, (n,) masses and ids."""
    positions: jnp.ndarray
    velocities: jnp.ndarray
    masses: jnp.ndarray
    ids: Optional[jnp.ndarray] = None

    def __len__(self):
        return self.positions.shape[0]

@dataclass
class HaloCatalog:
    """Halo point set, read once and never modified."""
    mass: np.ndarray
    positions: np.ndarray
    velocities: np.ndarray
    host_id: np.ndarray

    def __len__(self):
        return self.mass.shape[0]

    def select_mass_range(self, M_min: float, M_max: float) -> np.ndarray:
        """Boolean mask of halos with M_min < M < M_max."""
        return (self.mass > M_min) & (self.mass < M_max)

    @classmethod
    def read(cls, path: str) -> 'HaloCatalog':
        """
        Read Mvir, X/Y/Zcminpot, VX/VY/VZcminpot and hostHaloID.

        All datasets must have the same length.
        """
        try:
            with h5py.File(path, 'r') as f:
                mass = f['Mvir'][...].astype(np.float64)
                positions = np.stack([f[f"{a}cminpot"][...] for a in 'XYZ'], axis=1).astype(np.float64)
                velocities = np.stack([f[f"V{a}cminpot"][...] for a in 'XYZ'], axis=1).astype(np.float64)
                host_id = f['hostHaloID'][...].astype(np.int64)
        except (OSError, KeyError) as e:
            raise GridFileError(f"Cannot read halo catalog '{path}': {e}") from e
        except ValueError as e:
            raise GridFileError(f"Halo catalog '{path}' has datasets of unequal length: {e}") from e

        if host_id.shape[0] != mass.shape[0] or positions.shape[0] != mass.shape[0]:
            raise GridFileError(f"Halo catalog '{path}' has datasets of unequal length")
        return cls(mass, positions, velocities, host_id)

@dataclass
class PowerSpectrumBins:
    """Binned power spectrum: mean k, mean power and number of modes per bin."""
    k: jnp.ndarray
    power: jnp.ndarray
    counts: jnp.ndarray

@dataclass
class BootstrapStatistics:
    """Per-bin bootstrap means and unbiased variances of the retained bins."""
    k: np.ndarray
    counts: np.ndarray
    cross_mean: np.ndarray
    cross_var: np.ndarray
    halo_mean: np.ndarray
    matter_mean: np.ndarray
    reconstructed_mean: np.ndarray
    reconstructed_var: np.ndarray
    bias_mean: np.ndarray
    bias_var: np.ndarray
    correlation_mean: np.ndarray
    correlation_var: np.ndarray

@dataclass
class SimulationContext:
    """Context object that carries state between simulation steps."""
    config: 'SimulationConfig'
    data: Dict[str, Any] = None

    def __post_init__(self):
        if self.data is None:
            self.data = {}

    def get(self, key: str, default=None):
        """Get data from context."""
        return self.data.get(key, default)

    def set(self, key: str, value: Any):
        """Set data in context."""
        self.data[key] = value

    def has(self, key: str) -> bool:
        """Check if key exists in context."""
        return key in self.data

    def pop(self, key: str, default=None):
        """Remove data from context once the consuming step is done."""
        return self.data.pop(key, default)

@dataclass
class StepResult:
    """Result of a single simulation step."""
    success: bool
    step_name: str
    message: str = ""
    data: Optional[Dict[str, Any]] = None
    error: Optional[Exception] = None

@dataclass
class SimulationResult:
    """Result of complete simulation."""
    success: bool
    final_step: str
    step_results: list
    context: SimulationContext
    message: str = ""
