"""
Pure JAX implementation of FFT operations with continuum normalization.

A real grid of side N sampling a periodic box of side boxlen is mapped to
its N x N x (N/2+1) half spectrum. The forward transform multiplies the
discrete sum by boxlen^1.5 / N^3 and the backward transform undoes it, so
that backward(forward(x)) == x.
"""
import jax.numpy as jnp
import numpy as np
from typing import Tuple, Union

from .exceptions import GridError
from .k_grids import create_wavevectors


def wrap_index(i, j, k, N: int):
    """
    Row-major offset of grid point (i, j, k) after periodic wrapping.

    Works on integers and on integer arrays, so neighbour enumerations may
    safely reference indices outside [0, N).
    """
    return ((i % N) * N + (j % N)) * N + (k % N)


def rfft_with_normalization(field: jnp.ndarray, boxlen: float) -> jnp.ndarray:
    """
    Perform a real-to-complex 3D FFT in the continuum convention.

    Parameters:
    -----------
    field : jnp.ndarray
        Real-valued (N, N, N) input field
    boxlen : float
        Physical box size

    Returns:
    --------
    field_k : jnp.ndarray
        Complex (N, N, N//2+1) coefficients multiplied by boxlen^1.5 / N^3
    """
    N = field.shape[0]
    return jnp.fft.rfftn(field) * (boxlen**1.5 / N**3)


def irfft_with_normalization(field_k: jnp.ndarray, boxlen: float) -> jnp.ndarray:
    """
    Perform the inverse of rfft_with_normalization.

    jnp.fft.irfftn already divides by N^3, so the result is multiplied by
    N^3 / boxlen^1.5.

    Parameters:
    -----------
    field_k : jnp.ndarray
        Complex (N, N, N//2+1) coefficients
    boxlen : float
        Physical box size

    Returns:
    --------
    field : jnp.ndarray
        Real-valued (N, N, N) field
    """
    N = field_k.shape[0]
    field = jnp.fft.irfftn(field_k, s=(N, N, N))
    return field * (N**3 / boxlen**1.5)


def check_same_grid(N_a: int, boxlen_a: float, N_b: int, boxlen_b: float, rtol: float = 1e-5):
    """Raise GridError unless two grids have the same N and boxlen."""
    if N_a != N_b or abs(boxlen_a - boxlen_b) > rtol * abs(boxlen_a):
        raise GridError(
            f"Grid dimensions do not match: (N={N_a}, boxlen={boxlen_a}) "
            f"vs (N={N_b}, boxlen={boxlen_b})"
        )


def shrink_grid(field: Union[jnp.ndarray, np.ndarray], M: int) -> jnp.ndarray:
    """
    Reduce an N^3 grid to an M^3 grid by averaging blocks of (N/M)^3 cells.

    M must divide N.
    """
    N = field.shape[0]
    if M <= 0 or N % M != 0:
        raise GridError(f"Cannot shrink a grid of size {N} to {M}")
    f = N // M
    blocks = jnp.reshape(jnp.asarray(field), (M, f, M, f, M, f))
    return blocks.mean(axis=(1, 3, 5))


class SpectralGrid:
    """
    Geometry of a cubic periodic grid and its half-complex Fourier dual.

    Grid data are plain arrays passed between stages; this class only
    carries (N, boxlen) and the operations that depend on them.
    """

    def __init__(self, N: int, boxlen: float):
        if N <= 0 or N % 2 != 0:
            raise GridError(f"Grid size must be a positive even number, got N={N}")
        self.N = N
        self.boxlen = boxlen
        self.rshape = (N, N, N)
        self.cshape = (N, N, N // 2 + 1)
        self.dk = 2 * np.pi / boxlen
        self.k_nyquist = self.dk * N / 2
        self.cell_size = boxlen / N
        self.cell_volume = self.cell_size ** 3

    def __repr__(self):
        return f"SpectralGrid(N={self.N}, boxlen={self.boxlen})"

    def index(self, i, j, k):
        return wrap_index(i, j, k, self.N)

    def check_compatible(self, other: 'SpectralGrid'):
        check_same_grid(self.N, self.boxlen, other.N, other.boxlen)

    def _check_shape(self, field, shape: Tuple[int, int, int], kind: str):
        if tuple(field.shape) != shape:
            raise GridError(f"Expected a {kind} grid of shape {shape}, got {tuple(field.shape)}")

    def forward(self, field: jnp.ndarray) -> jnp.ndarray:
        """Real (N,N,N) grid -> normalized half spectrum."""
        self._check_shape(field, self.rshape, 'real')
        return rfft_with_normalization(jnp.asarray(field), self.boxlen)

    def backward(self, field_k: jnp.ndarray) -> jnp.ndarray:
        """Normalized half spectrum -> real (N,N,N) grid."""
        self._check_shape(field_k, self.cshape, 'complex')
        return irfft_with_normalization(field_k, self.boxlen)

    def wavevectors(self, apply_nyquist_zeroing: bool = False):
        """Broadcastable (kx, ky, kz, |k|) for the half spectrum."""
        return create_wavevectors(self.N, self.boxlen, apply_nyquist_zeroing)

    @property
    def white_noise_power(self) -> float:
        """Power spectrum of unit-variance white noise, boxlen^3 / N^3."""
        return self.cell_volume
