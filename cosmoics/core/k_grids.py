"""
Pure JAX implementation of k-space grid utilities.

Wavevectors are never stored with a grid; they are derived on demand from
the grid side N and the physical box length.
"""
import jax.numpy as jnp
from typing import Tuple


def fft_frequencies(N: int, box_size: float, rfft_axis: bool = False) -> jnp.ndarray:
    """
    Generate FFT frequency arrays in physical units.

    Indices i >= N/2 are wrapped to the negative frequency i - N on every
    axis, including the Nyquist index of the half-length real FFT axis.

    Parameters:
    -----------
    N : int
        Grid size
    box_size : float
        Physical box size
    rfft_axis : bool
        If True, return the N//2+1 frequencies of the last axis of a real FFT

    Returns:
    --------
    freqs : jnp.ndarray
        Frequency array in units of 1/length
    """
    dk = 2 * jnp.pi / box_size
    n = N // 2 + 1 if rfft_axis else N
    idx = jnp.arange(n)
    wrapped = jnp.where(idx >= N // 2, idx - N, idx)
    return wrapped * dk


def apply_nyquist_treatment(k_array: jnp.ndarray, N: int) -> jnp.ndarray:
    """
    Set the Nyquist frequency of a 1D frequency array to zero.

    Used by the derivative operators, for which the Nyquist mode has no
    well-defined sign and would break Hermitian symmetry of the output.
    """
    if N % 2 != 0:
        return k_array
    return jnp.where(jnp.arange(k_array.shape[0]) == N // 2, 0.0, k_array)


def create_k_grids_rfft(
    N: int,
    box_size: float,
    apply_nyquist_zeroing: bool = False
) -> Tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray]:
    """
    Create 1D k-space coordinate arrays for a real FFT grid.

    Returns:
    --------
    kx, ky, kz : Tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray]
        Arrays of lengths N, N and N//2+1.
    """
    kx = fft_frequencies(N, box_size, rfft_axis=False)
    ky = fft_frequencies(N, box_size, rfft_axis=False)
    kz = fft_frequencies(N, box_size, rfft_axis=True)

    if apply_nyquist_zeroing:
        kx = apply_nyquist_treatment(kx, N)
        ky = apply_nyquist_treatment(ky, N)
        kz = apply_nyquist_treatment(kz, N)

    return kx, ky, kz


def create_wavevectors(
    N: int,
    box_size: float,
    apply_nyquist_zeroing: bool = False
) -> Tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray, jnp.ndarray]:
    """
    Broadcastable wavevector components and magnitude for an (N, N, N//2+1) grid.

    The magnitude always uses the unmodified frequencies so that binning and
    isotropic kernels see the true |k| of Nyquist modes.
    """
    kx, ky, kz = create_k_grids_rfft(N, box_size, apply_nyquist_zeroing)
    rx, ry, rz = create_k_grids_rfft(N, box_size, False)

    k = jnp.sqrt(rx[:, None, None]**2 + ry[None, :, None]**2 + rz[None, None, :]**2)

    return kx[:, None, None], ky[None, :, None], kz[None, None, :], k


def half_spectrum_weights(N: int) -> jnp.ndarray:
    """
    Multiplicity of each stored mode of a real FFT grid along the last axis.

    Modes with kz != 0 and kz != N/2 stand for themselves and their omitted
    complex conjugate, so they count twice.
    """
    iz = jnp.arange(N // 2 + 1)
    w = jnp.where((iz == 0) | (iz == N // 2), 1.0, 2.0)
    return w[None, None, :]
