"""
Particle generation from displacement and velocity grids.

Particles start on a regular lattice, are moved by the displacement field
and take the velocity field at their displaced positions. Species with
thermal motion additionally get a random velocity drawn from a
Fermi-Dirac or Bose-Einstein momentum distribution.
"""
import logging
from typing import Iterator, Optional, Sequence
import jax
import jax.numpy as jnp
import numpy as np
from scipy.integrate import cumulative_trapezoid

from ..core.config import ParticleType, Units
from ..core.data_models import ParticleData
from ..core.exceptions import ConfigurationError, NumericalError
from ..core.mass_assignment import interpolate

logger = logging.getLogger(__name__)

FERMION_TYPE = 'fermion'
BOSON_TYPE = 'boson'

# Momentum domain of the thermal samplers, in units of kT
THERMAL_MIN_MOMENTUM = 1e-4
THERMAL_MAX_MOMENTUM = 20.0
THERMAL_TABLE_SIZE = 4096


def lattice_positions(ptype: ParticleType, boxlen: float, start: int, count: int):
    """
    Positions i * boxlen / M of lattice sites start ... start + count - 1.

    Sites are numbered in row-major order of the M^3 lattice, M being the
    cube root number of the type.
    """
    M = ptype.cube_root_number
    index = jnp.arange(start, start + count, dtype=jnp.int64)
    ix, rem = jnp.divmod(index, M * M)
    iy, iz = jnp.divmod(rem, M)
    q = jnp.stack([ix, iy, iz], axis=1).astype(jnp.float64) * (boxlen / M)
    return q, ptype.first_id + index


def periodic_wrap(positions, boxlen: float):
    """Map coordinates into [0, boxlen)."""
    wrapped = jnp.mod(positions, boxlen)
    # mod can round up to boxlen for tiny negative inputs
    return jnp.where(wrapped >= boxlen, wrapped - boxlen, wrapped)


def particle_mass(omega: float, units: Units, h: float, boxlen: float, total_number: int) -> float:
    """Mass of one particle, Omega * rho_crit * boxlen^3 / total_number."""
    return omega * units.critical_density(h) * boxlen ** 3 / total_number


class ThermalSampler:
    """
    Draws present-day momenta (in eV) from a relativistic thermal distribution.

    The density x^2 / (exp(x / T) +- 1) is tabulated on
    [THERMAL_MIN_MOMENTUM, THERMAL_MAX_MOMENTUM] * T and sampled by inverting
    its cumulative distribution.
    """

    def __init__(self, motion_type: str, temperature_eV: float, table_size: int = THERMAL_TABLE_SIZE):
        if motion_type == FERMION_TYPE:
            sign = 1.0
        elif motion_type == BOSON_TYPE:
            sign = -1.0
        else:
            raise ConfigurationError(f"Unsupported thermal motion type '{motion_type}'")
        if not temperature_eV > 0:
            raise ConfigurationError(f"Thermal motion needs a positive temperature, got {temperature_eV} eV")

        self.motion_type = motion_type
        self.temperature_eV = temperature_eV

        x = np.linspace(THERMAL_MIN_MOMENTUM, THERMAL_MAX_MOMENTUM, table_size) * temperature_eV
        pdf = x * x / (np.exp(x / temperature_eV) + sign)
        cdf = cumulative_trapezoid(pdf, x, initial=0.0)
        self._momenta = x
        self._cdf = cdf / cdf[-1]

    def sample(self, key, n: int) -> np.ndarray:
        u = np.asarray(jax.random.uniform(key, (n,), dtype=jnp.float64))
        return np.interp(u, self._cdf, self._momenta)


def thermal_velocities(key, sampler: ThermalSampler, n: int, a_ini: float,
                       mass_eV: float, speed_of_light: float) -> jnp.ndarray:
    """
    Random thermal velocities of n particles.

    Momenta are redshifted by 1/a_ini and converted to the speed p / m * c
    (the spatial part of the four-velocity), along random directions built
    from three normalized Gaussians.
    """
    key_p, key_dir = jax.random.split(key)
    p_eV = sampler.sample(key_p, n) / a_ini
    if not np.all(np.isfinite(p_eV) & (p_eV > 0)):
        bad = p_eV[~(np.isfinite(p_eV) & (p_eV > 0))][0]
        raise NumericalError(f"Invalid thermal momentum drawn: {bad:e}")

    V = p_eV / mass_eV * speed_of_light

    direction = jax.random.normal(key_dir, (n, 3), dtype=jnp.float64)
    length = jnp.linalg.norm(direction, axis=1, keepdims=True)
    direction = jnp.where(length > 0, direction / jnp.where(length > 0, length, 1.0), direction)
    if not bool(jnp.all(jnp.isfinite(direction))):
        raise NumericalError("Invalid random thermal direction drawn")

    return direction * jnp.asarray(V)[:, None]


class ParticleGenerator:
    """
    Generates the particles of one type chunk by chunk.

    Parameters:
    -----------
    ptype : ParticleType
        Species to generate
    displacement : sequence of 3 arrays, optional
        Displacement grids; particles move by minus their interpolated value.
        None leaves the particles on the lattice
    velocity : sequence of 3 arrays, optional
        Velocity grids, interpolated at the displaced positions. None gives
        no bulk velocity
    boxlen : float
        Physical box size
    mass : float
        Mass of every particle of this type
    scheme : str
        Interpolation kernel ('tsc' or 'cic')
    thermal : ThermalSampler, optional
        Sampler of thermal momenta
    a_ini : float
        Scale factor at which the particles are generated
    speed_of_light : float
        c in internal units
    seed : int
        Seed of the thermal draws
    """

    def __init__(self, ptype: ParticleType, displacement: Optional[Sequence], velocity: Optional[Sequence],
                 boxlen: float, mass: float, scheme: str = 'tsc',
                 thermal: Optional[ThermalSampler] = None, a_ini: float = 1.0,
                 speed_of_light: float = 1.0, seed: int = 0):
        self.ptype = ptype
        self.displacement = None if displacement is None else [jnp.asarray(g) for g in displacement]
        self.velocity = None if velocity is None else [jnp.asarray(g) for g in velocity]
        self.boxlen = boxlen
        self.mass = mass
        self.scheme = scheme
        self.thermal = thermal
        self.a_ini = a_ini
        self.speed_of_light = speed_of_light
        self.key = jax.random.PRNGKey(seed)

    def chunk(self, chunk: int) -> ParticleData:
        ptype = self.ptype
        start = chunk * ptype.chunk_size
        count = min(ptype.chunk_size, ptype.total_number - start)

        q, ids = lattice_positions(ptype, self.boxlen, start, count)

        x = q
        if self.displacement is not None:
            x = q - jnp.stack([interpolate(g, q, self.boxlen, self.scheme) for g in self.displacement], axis=1)
        v = jnp.zeros_like(x)
        if self.velocity is not None:
            v = jnp.stack([interpolate(g, x, self.boxlen, self.scheme) for g in self.velocity], axis=1)

        if self.thermal is not None:
            v = v + thermal_velocities(jax.random.fold_in(self.key, chunk), self.thermal, count,
                                       self.a_ini, ptype.microscopic_mass_eV, self.speed_of_light)

        return ParticleData(
            positions=periodic_wrap(x, self.boxlen),
            velocities=v,
            masses=jnp.full(count, self.mass),
            ids=ids
        )

    def chunks(self) -> Iterator[ParticleData]:
        for chunk in range(self.ptype.chunks):
            if chunk * self.ptype.chunk_size >= self.ptype.total_number:
                break
            logger.debug("Generating chunk %d of type '%s'", chunk, self.ptype.identifier)
            yield self.chunk(chunk)


def thermal_sampler_for(ptype: ParticleType, units: Units) -> Optional[ThermalSampler]:
    """Sampler for a thermal species, None for cold ones."""
    if not ptype.thermal_motion_type:
        return None
    if not ptype.microscopic_mass_eV > 0:
        raise ConfigurationError(f"Thermal type '{ptype.identifier}' needs a positive microscopic mass")
    T_eV = ptype.microscopic_temperature * units.k_boltzmann / units.electron_volt
    logger.info("Thermal motion: %s with [M, T] = [%e eV, %e eV]",
                ptype.thermal_motion_type, ptype.microscopic_mass_eV, T_eV)
    return ThermalSampler(ptype.thermal_motion_type, T_eV)
