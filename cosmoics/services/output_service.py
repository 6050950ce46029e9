"""
Particle output file.

One group per export name holds Coordinates (n, 3), Velocities (n, 3),
Masses (n,) and ParticleIDs (n,), sized by the total number of all types
exported under that name. Each type writes its chunks at its own offset in
the group, so the full particle set is never held in memory.
"""
import logging
from collections import OrderedDict
from typing import Dict, List
import h5py
import numpy as np

from ..core.config import ParticleType
from ..core.data_models import ParticleData
from ..core.exceptions import GridFileError

logger = logging.getLogger(__name__)


def export_groups(particle_types: List[ParticleType]) -> Dict[str, int]:
    """Total number of particles per export name, in order of first appearance."""
    groups = OrderedDict()
    for ptype in particle_types:
        groups[ptype.export_name] = groups.get(ptype.export_name, 0) + ptype.total_number
    return groups


def type_offsets(particle_types: List[ParticleType]) -> Dict[str, int]:
    """Offset of each type (by identifier) inside its export group."""
    filled = {}
    offsets = {}
    for ptype in particle_types:
        offsets[ptype.identifier] = filled.get(ptype.export_name, 0)
        filled[ptype.export_name] = offsets[ptype.identifier] + ptype.total_number
    return offsets


class ParticleWriter:
    """Writes particle chunks into a freshly created output file."""

    def __init__(self, path: str, particle_types: List[ParticleType], boxlen: float, redshift: float):
        self.path = path
        self.groups = export_groups(particle_types)
        self.offsets = type_offsets(particle_types)
        try:
            self._file = h5py.File(path, 'w')
        except OSError as e:
            raise GridFileError(f"Cannot create output file '{path}': {e}") from e

        header = self._file.create_group('Header')
        header.attrs['BoxSize'] = boxlen
        header.attrs['Dimension'] = 3
        header.attrs['Redshift'] = redshift
        header.attrs['NumPart_Total'] = np.array(list(self.groups.values()), dtype=np.int64)

        for name, partnum in self.groups.items():
            logger.info("Creating group '%s' with %d particles", name, partnum)
            grp = self._file.create_group(name)
            grp.create_dataset('Coordinates', shape=(partnum, 3), dtype=np.float64)
            grp.create_dataset('Velocities', shape=(partnum, 3), dtype=np.float64)
            grp.create_dataset('Masses', shape=(partnum,), dtype=np.float64)
            grp.create_dataset('ParticleIDs', shape=(partnum,), dtype=np.int64)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        self._file.close()

    def write_chunk(self, ptype: ParticleType, start: int, particles: ParticleData):
        """Write particles start ... start + len(particles) of a type."""
        grp = self._file[ptype.export_name]
        first = self.offsets[ptype.identifier] + start
        sel = slice(first, first + len(particles))

        grp['Coordinates'][sel] = np.asarray(particles.positions, dtype=np.float64)
        grp['Velocities'][sel] = np.asarray(particles.velocities, dtype=np.float64)
        grp['Masses'][sel] = np.asarray(particles.masses, dtype=np.float64)
        grp['ParticleIDs'][sel] = np.asarray(particles.ids, dtype=np.int64)


def read_particles(path: str, export_name: str) -> ParticleData:
    """Read back a whole export group."""
    try:
        with h5py.File(path, 'r') as f:
            grp = f[export_name]
            return ParticleData(
                positions=grp['Coordinates'][...],
                velocities=grp['Velocities'][...],
                masses=grp['Masses'][...],
                ids=grp['ParticleIDs'][...]
            )
    except (OSError, KeyError) as e:
        raise GridFileError(f"Cannot read group '{export_name}' from '{path}': {e}") from e
