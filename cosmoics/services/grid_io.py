"""
Grid file input/output, whole or by sub-cube.

A grid file holds a `Header` group with the attribute BoxSize = [L, L, L]
and a dataset `Field` of shape (N, N, N). Files meant for out-of-core
processing are stored in L^3 HDF5 chunks of side N / cbrt(chunks), so each
sub-cube read or write touches exactly one chunk.
"""
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Sequence, Tuple
import logging
import h5py
import numpy as np

from ..core.buffers import GridPool
from ..core.exceptions import ConfigurationError, GridFileError
from ..core.fft_ops import check_same_grid

logger = logging.getLogger(__name__)


def chunk_side(N: int, chunks: int) -> int:
    """Side of the sub-cubes when an N^3 grid is cut into `chunks` pieces."""
    L = round(chunks ** (1.0 / 3.0))
    if chunks <= 0 or L ** 3 != chunks:
        raise ConfigurationError(f"Number of chunks {chunks} is not a perfect cube")
    if N % L != 0:
        raise ConfigurationError(f"Chunk grid side {L} does not divide N={N}")
    return N // L


@dataclass(frozen=True)
class ChunkSlice:
    """Sub-cube j of the grid, in row-major order of the chunk grid."""
    index: int
    offset: Tuple[int, int, int]
    side: int

    @property
    def slices(self) -> Tuple[slice, slice, slice]:
        return tuple(slice(o, o + self.side) for o in self.offset)

    @property
    def shape(self) -> Tuple[int, int, int]:
        return (self.side, self.side, self.side)


def chunk_slice(N: int, chunks: int, j: int) -> ChunkSlice:
    side = chunk_side(N, chunks)
    if not 0 <= j < chunks:
        raise ConfigurationError(f"Chunk {j} out of range for {chunks} chunks")
    L = N // side
    cx, rem = divmod(j, L * L)
    cy, cz = divmod(rem, L)
    return ChunkSlice(j, (cx * side, cy * side, cz * side), side)


def iter_chunks(N: int, chunks: int) -> Iterator[ChunkSlice]:
    for j in range(chunks):
        yield chunk_slice(N, chunks, j)


class GridFile:
    """
    An open grid file.

    Use as a context manager; the underlying HDF5 file is closed on exit,
    also when an error interrupts a pass.
    """

    def __init__(self, path: str, mode: str = 'r'):
        self.path = path
        try:
            self._file = h5py.File(path, mode)
        except OSError as e:
            raise GridFileError(f"Cannot open grid file '{path}': {e}") from e
        try:
            self.boxlen = self._read_boxlen()
            self.N = self._file['Field'].shape[0]
        except KeyError as e:
            self._file.close()
            raise GridFileError(f"Grid file '{path}' lacks a header or field: {e}") from e
        except ConfigurationError:
            self._file.close()
            raise

    @classmethod
    def create(cls, path: str, N: int, boxlen: float, chunks: int = 1) -> 'GridFile':
        """Create a grid file with its header and an empty Field dataset."""
        side = chunk_side(N, chunks)
        try:
            with h5py.File(path, 'w') as f:
                header = f.create_group('Header')
                header.attrs['BoxSize'] = np.array([boxlen, boxlen, boxlen], dtype=np.float64)
                f.create_dataset('Field', shape=(N, N, N), dtype=np.float64,
                                 chunks=(side, side, side) if chunks > 1 else None)
        except OSError as e:
            raise GridFileError(f"Cannot create grid file '{path}': {e}") from e
        return cls(path, 'r+')

    def _read_boxlen(self) -> float:
        box = np.asarray(self._file['Header'].attrs['BoxSize'], dtype=np.float64)
        if box.shape != (3,) or not (box[0] == box[1] == box[2]):
            raise ConfigurationError(f"Grid file '{self.path}' has a non-cubic box {box}")
        shape = self._file['Field'].shape
        if len(shape) != 3 or not (shape[0] == shape[1] == shape[2]):
            raise ConfigurationError(f"Grid file '{self.path}' has a non-cubic field {shape}")
        return float(box[0])

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        self._file.close()

    def check(self, N: int, boxlen: float):
        check_same_grid(self.N, self.boxlen, N, boxlen)

    def read(self) -> np.ndarray:
        return self._file['Field'][...]

    def write(self, data):
        self._file['Field'][...] = np.asarray(data, dtype=np.float64)

    def read_chunk(self, chunk: ChunkSlice, out: Optional[np.ndarray] = None) -> np.ndarray:
        if out is None:
            out = np.empty(chunk.shape, dtype=np.float64)
        self._file['Field'].read_direct(out, source_sel=chunk.slices)
        return out

    def write_chunk(self, chunk: ChunkSlice, data):
        self._file['Field'][chunk.slices] = np.asarray(data, dtype=np.float64)


def write_grid(path: str, grid, boxlen: float, chunks: int = 1):
    """Write a full (N, N, N) grid."""
    N = grid.shape[0]
    with GridFile.create(path, N, boxlen, chunks) as f:
        f.write(grid)
    logger.debug("Wrote grid '%s' (N=%d, boxlen=%g)", path, N, boxlen)


def create_grid_file(path: str, N: int, boxlen: float, chunks: int = 1):
    """Create an empty grid file to be filled chunk by chunk."""
    GridFile.create(path, N, boxlen, chunks).close()


def read_chunk(path: str, j: int, chunks: int) -> np.ndarray:
    """Sub-cube j of a grid file."""
    with GridFile(path) as f:
        return f.read_chunk(chunk_slice(f.N, chunks, j))


def write_chunk(path: str, j: int, chunks: int, data):
    """Overwrite sub-cube j of an existing grid file."""
    with GridFile(path, 'r+') as f:
        chunk = chunk_slice(f.N, chunks, j)
        if np.shape(data) != chunk.shape:
            raise ConfigurationError(f"Chunk data of shape {np.shape(data)} does not fit {chunk.shape}")
        f.write_chunk(chunk, data)


def read_grid(path: str, N: Optional[int] = None, boxlen: Optional[float] = None) -> Tuple[np.ndarray, float]:
    """
    Read a full grid and its box length.

    When N and boxlen are given the file must match them.
    """
    with GridFile(path) as f:
        if N is not None and boxlen is not None:
            f.check(N, boxlen)
        return f.read(), f.boxlen


def map_chunks(
    input_paths: Sequence[str],
    output_path: str,
    fn: Callable[..., np.ndarray],
    chunks: int,
    pool: Optional[GridPool] = None
):
    """
    One read-transform-write pass over sub-cubes.

    For each chunk, the sub-cubes of all inputs are read into pooled buffers
    and fn(*inputs) is written to the same sub-cube of the output. The output
    file is created with the geometry of the first input. Chunks are
    independent, so their order does not matter.
    """
    with ExitStack() as stack:
        inputs = [stack.enter_context(GridFile(p)) for p in input_paths]
        N, boxlen = inputs[0].N, inputs[0].boxlen
        for f in inputs[1:]:
            f.check(N, boxlen)

        output = stack.enter_context(GridFile.create(output_path, N, boxlen, chunks))
        side = chunk_side(N, chunks)
        if pool is None or pool.shape != (side, side, side):
            pool = GridPool((side, side, side))

        for chunk in iter_chunks(N, chunks):
            with ExitStack() as buffers:
                data = [f.read_chunk(chunk, buffers.enter_context(pool.borrow())) for f in inputs]
                output.write_chunk(chunk, fn(*data))
