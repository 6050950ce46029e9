"""
Slab decomposition of the grid over processes.

Each process owns the contiguous range [start, end) of the first grid axis.
The helpers below are the only collective points; without a communicator
they return their input unchanged.
"""
from dataclasses import dataclass
import numpy as np
import jax.numpy as jnp


def get_communicator():
    """MPI.COMM_WORLD if mpi4py is installed, otherwise None (serial run)."""
    try:
        from mpi4py import MPI
    except ImportError:
        return None
    return MPI.COMM_WORLD


@dataclass(frozen=True)
class SlabDecomposition:
    N: int
    rank: int = 0
    size: int = 1

    @classmethod
    def from_comm(cls, N: int, comm=None) -> 'SlabDecomposition':
        if comm is None:
            return cls(N)
        return cls(N, comm.Get_rank(), comm.Get_size())

    @property
    def start(self) -> int:
        return self.rank * self.N // self.size

    @property
    def end(self) -> int:
        return (self.rank + 1) * self.N // self.size

    @property
    def local_size(self) -> int:
        return self.end - self.start

    @property
    def is_root(self) -> bool:
        return self.rank == 0


def gather_slabs(local: jnp.ndarray, comm=None) -> jnp.ndarray:
    """Concatenate the slabs of all processes along the first axis."""
    if comm is None or comm.Get_size() == 1:
        return local
    slabs = comm.allgather(np.asarray(local))
    return jnp.concatenate([jnp.asarray(s) for s in slabs], axis=0)


def allreduce_grid(grid, comm=None):
    """Sum a grid over all processes."""
    if comm is None or comm.Get_size() == 1:
        return grid
    from mpi4py import MPI
    send = np.ascontiguousarray(np.asarray(grid))
    recv = np.empty_like(send)
    comm.Allreduce(send, recv, op=MPI.SUM)
    return jnp.asarray(recv)
