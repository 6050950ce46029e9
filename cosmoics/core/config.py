"""
Configuration data structures.
"""
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
import math
import jax.numpy as jnp

from .exceptions import ConfigurationError

# SI values of the physical constants used for unit conversions
GRAVITY_SI = 6.67430e-11
SPEED_OF_LIGHT_SI = 2.99792458e8
K_BOLTZMANN_SI = 1.380649e-23
ELECTRON_VOLT_SI = 1.602176634e-19
MPC_METRES = 3.085677581491367e22

@dataclass
class Units:
    """Internal unit system, defaults to Mpc, Gyr and 1e10 solar masses."""
    unit_length_metres: float = MPC_METRES
    unit_time_seconds: float = 3.15576e16
    unit_mass_kilogram: float = 1.98841e40

    @property
    def gravitational_constant(self) -> float:
        L, T, M = self.unit_length_metres, self.unit_time_seconds, self.unit_mass_kilogram
        return GRAVITY_SI * M * T * T / (L * L * L)

    @property
    def speed_of_light(self) -> float:
        return SPEED_OF_LIGHT_SI * self.unit_time_seconds / self.unit_length_metres

    @property
    def k_boltzmann(self) -> float:
        L, T, M = self.unit_length_metres, self.unit_time_seconds, self.unit_mass_kilogram
        return K_BOLTZMANN_SI * T * T / (M * L * L)

    @property
    def electron_volt(self) -> float:
        L, T, M = self.unit_length_metres, self.unit_time_seconds, self.unit_mass_kilogram
        return ELECTRON_VOLT_SI * T * T / (M * L * L)

    def hubble_constant(self, h: float) -> float:
        """H0 = 100 h km/s/Mpc in inverse internal time units."""
        return h * 1e5 / MPC_METRES * self.unit_time_seconds

    def critical_density(self, h: float) -> float:
        """Present-day critical density 3 H0^2 / (8 pi G) in internal units."""
        H0 = self.hubble_constant(h)
        return 3.0 * H0 * H0 / (8.0 * math.pi * self.gravitational_constant)

@dataclass
class CosmologicalParameters:
    """Cosmological parameters needed by the spectral pipeline."""
    h: float = 0.67
    A_s: float = 2.1e-9
    n_s: float = 0.965
    k_pivot: float = 0.05
    z_ini: float = 40.0

    def primordial_power(self, k: jnp.ndarray) -> jnp.ndarray:
        """
        Primordial power spectrum A_s (k / k_pivot)^n_s.

        The k = 0 mode is mapped to zero.
        """
        k = jnp.asarray(k)
        safe_k = jnp.where(k > 0, k, 1.0)
        return jnp.where(k > 0, self.A_s * (safe_k / self.k_pivot) ** self.n_s, 0.0)

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> 'CosmologicalParameters':
        return cls(**{k: v for k, v in params.items() if k in cls.__dataclass_fields__})

@dataclass
class TransferConventions:
    """
    Unit metadata of a transfer function table.

    Wavenumbers in the table are in units of h^h_exponent / length_unit and
    tabulated values equal sign * T(k) * k^k_exponent.
    """
    h_exponent: float = 1.0
    k_exponent: float = 0.0
    sign: float = -1.0
    unit_length_metres: float = MPC_METRES

    # Named presets: name -> (h_exponent, k_exponent, sign)
    PRESETS = {
        'CLASS': (1.0, 0.0, -1.0),
        'Plain': (0.0, -2.0, 1.0),
    }

    @classmethod
    def from_format(cls, name: str, unit_length_metres: float = MPC_METRES) -> 'TransferConventions':
        """Create conventions from a named table format ('CLASS' or 'Plain')."""
        for key, (h_exp, k_exp, sign) in cls.PRESETS.items():
            if key.lower() == name.lower():
                return cls(h_exp, k_exp, sign, unit_length_metres)
        raise ConfigurationError(f"Unknown transfer function format: {name}")

@dataclass
class GridConfiguration:
    """
    Grid and box configuration.

    A positive small_grid_size also exports a block-averaged copy of the
    Gaussian field of that size.
    """
    N: int
    boxlen: float
    chunks: int = 1
    small_grid_size: int = 0

    def __post_init__(self):
        if self.N <= 0 or self.N % 2 != 0:
            raise ConfigurationError(f"Grid size must be a positive even number, got N={self.N}")
        if self.boxlen <= 0:
            raise ConfigurationError(f"Box length must be positive, got {self.boxlen}")
        side = round(self.chunks ** (1.0 / 3.0))
        if side ** 3 != self.chunks or self.N % side != 0:
            raise ConfigurationError(
                f"Number of chunks {self.chunks} must be a cube whose root divides N={self.N}"
            )
        if self.small_grid_size < 0 or (self.small_grid_size > 0 and self.N % self.small_grid_size != 0):
            raise ConfigurationError(
                f"Small grid size {self.small_grid_size} must divide N={self.N}"
            )

    @property
    def cell_volume(self) -> float:
        return (self.boxlen / self.N) ** 3

@dataclass
class ParticleType:
    """
    A species of particles generated from its own pair of transfer functions.

    Either the total number or its cube root may be given, and either the
    number of chunks or the chunk size; the missing values are inferred.
    Either transfer function may be left empty (or None): without a
    density function the particles stay on the lattice, without a velocity
    function they get no bulk velocity.
    """
    identifier: str
    export_name: str = 'PartType1'
    total_number: int = 0
    cube_root_number: int = 0
    chunks: int = 0
    chunk_size: int = 0
    transfer_function_density: Optional[str] = 'd_cdm'
    transfer_function_velocity: Optional[str] = 't_cdm'
    thermal_motion_type: str = ''
    microscopic_mass_eV: float = 0.0
    microscopic_temperature: float = 0.0
    first_id: int = 0

    def __post_init__(self):
        # An empty title skips that grid
        self.transfer_function_density = self.transfer_function_density or ''
        self.transfer_function_velocity = self.transfer_function_velocity or ''
        if not (self.transfer_function_density or self.transfer_function_velocity):
            raise ConfigurationError(
                f"Particle type '{self.identifier}' needs a density or a velocity transfer function"
            )

        if self.total_number == 0 and self.cube_root_number > 0:
            self.total_number = self.cube_root_number ** 3
        elif self.total_number > 0:
            crn = int(round(self.total_number ** (1.0 / 3.0)))
            if crn ** 3 < self.total_number:
                crn += 1
            self.cube_root_number = crn
        else:
            raise ConfigurationError(f"Particle type '{self.identifier}' has no particles")

        if self.chunks == 0 and self.chunk_size > 0:
            self.chunks = math.ceil(self.total_number / self.chunk_size)
        elif self.chunks > 0 and self.chunk_size == 0:
            self.chunk_size = math.ceil(self.total_number / self.chunks)
        elif self.chunks == 0 and self.chunk_size == 0:
            self.chunks = 1
            self.chunk_size = self.total_number
        elif self.chunks * self.chunk_size < self.total_number:
            raise ConfigurationError(
                f"Particle type '{self.identifier}': {self.chunks} chunks of size "
                f"{self.chunk_size} cannot hold {self.total_number} particles"
            )

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> 'ParticleType':
        return cls(**{k: v for k, v in params.items() if k in cls.__dataclass_fields__})

@dataclass
class SimulationParameters:
    """Simulation-specific parameters."""
    seed: int = 13579
    transfer_file: str = 'perturb.hdf5'
    merge_cdm_baryons: bool = False
    spt_cycles: int = 0
    interpolation_scheme: str = 'tsc'
    final_step: str = 'all'

@dataclass
class OutputConfig:
    """Output configuration."""
    output_dir: str = './output/'
    output_filename: str = 'particles.hdf5'
    keep_grids: bool = True

@dataclass
class BiasConfig:
    """Parameters of the bootstrapped velocity bias estimate."""
    halo_file: str = 'halos.hdf5'
    velocity_grid_basename: str = 'velocity'
    M_min: float = 0.0
    M_max: float = float('inf')
    bins: int = 50
    num_samples: int = 8
    redshift: float = 0.0
    velocity_conversion: float = 9.7846194238e2
    seed: int = 101
    transfer_function_theta: str = 't_cdm'
    transfer_function_delta: str = 'd_cdm'

    def __post_init__(self):
        if self.num_samples < 2:
            raise ConfigurationError("At least two bootstrap samples are needed for a variance")
        if not self.M_min < self.M_max:
            raise ConfigurationError(f"Empty halo mass range ({self.M_min}, {self.M_max})")
        if self.bins <= 0:
            raise ConfigurationError("Number of power spectrum bins must be positive")

@dataclass
class SimulationConfig:
    """Master configuration for simulation."""
    cosmology: CosmologicalParameters
    grid: GridConfiguration
    simulation: SimulationParameters = field(default_factory=SimulationParameters)
    output: OutputConfig = field(default_factory=OutputConfig)
    units: Units = field(default_factory=Units)
    transfer: TransferConventions = field(default_factory=TransferConventions)
    particle_types: List[ParticleType] = field(default_factory=list)
    bias: Optional[BiasConfig] = None

    def find_type(self, identifier: str) -> ParticleType:
        for ptype in self.particle_types:
            if ptype.identifier == identifier:
                return ptype
        raise ConfigurationError(f"Unknown particle type '{identifier}'")

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> 'SimulationConfig':
        """Create from a nested dictionary of sections."""
        if 'grid' not in params:
            raise ConfigurationError("Missing 'grid' section")

        transfer_params = dict(params.get('transfer', {}))
        if 'format' in transfer_params:
            transfer = TransferConventions.from_format(
                transfer_params['format'],
                transfer_params.get('unit_length_metres', MPC_METRES)
            )
        else:
            transfer = TransferConventions(**transfer_params)

        bias = BiasConfig(**params['bias']) if 'bias' in params else None

        return cls(
            cosmology=CosmologicalParameters.from_dict(params.get('cosmology', {})),
            grid=GridConfiguration(**params['grid']),
            simulation=SimulationParameters(**params.get('simulation', {})),
            output=OutputConfig(**params.get('output', {})),
            units=Units(**params.get('units', {})),
            transfer=transfer,
            particle_types=[ParticleType.from_dict(p) for p in params.get('particle_types', [])],
            bias=bias
        )
