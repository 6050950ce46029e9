"""
Pure JAX implementation of Gaussian random field generation.

The field is synthesized directly in Fourier space as the half spectrum of
real white noise with unit variance per cell. Every row of the first axis
draws from its own key, fold_in(PRNGKey(seed), row), so a slab of the field
is identical to the same rows of the serial field.
"""
import jax
import jax.numpy as jnp
import jax.random as rnd
from typing import Optional

from .decomposition import SlabDecomposition
from .exceptions import ConfigurationError


def _draw_rows(key, rows: jnp.ndarray, N: int, dtype) -> jnp.ndarray:
    """Standard normal pairs of shape (len(rows), 2, N, N//2+1)."""
    shape = (2, N, N // 2 + 1)
    return jax.vmap(lambda i: rnd.normal(rnd.fold_in(key, i), shape, dtype))(rows)


def generate_complex_grf(
    N: int,
    boxlen: float,
    seed: int = 13579,
    slab: Optional[SlabDecomposition] = None,
    dtype: jnp.dtype = jnp.float64
) -> jnp.ndarray:
    """
    Generate the half spectrum of a unit-variance real white noise field.

    Real and imaginary parts are independent normals with variance
    boxlen^3 / (2 N^3) each, the expected |F|^2 of unit-variance white noise
    under the boxlen^1.5 / N^3 forward normalization. On the kz = 0 and
    kz = N/2 planes the conjugate pairs (i, j) <-> (-i, -j) are tied
    together and the self-conjugate modes are real.

    Parameters:
    -----------
    N : int
        Grid size (even)
    boxlen : float
        Physical box size
    seed : int
        Random seed; the same seed gives the same field for any slab layout
    slab : SlabDecomposition, optional
        Rows of the first axis to generate; all rows if None
    dtype : jnp.dtype
        Real dtype of the Gaussian draws

    Returns:
    --------
    field_k : jnp.ndarray
        Complex array of shape (end - start, N, N//2+1)
    """
    if N % 2 != 0:
        raise ConfigurationError(f"Gaussian fields need an even grid size, got N={N}")

    start, end = (0, N) if slab is None else (slab.start, slab.end)
    key = rnd.PRNGKey(seed)
    sigma = jnp.sqrt(boxlen**3 / N**3 / 2.0)

    rows = jnp.arange(start, end)
    mirror_rows = (-rows) % N

    draws = _draw_rows(key, rows, N, dtype)
    field_k = sigma * (draws[:, 0] + 1j * draws[:, 1])
    del draws

    # Only the partner planes are needed from the mirrored rows
    partner = _draw_rows(key, mirror_rows, N, dtype)

    jj = jnp.arange(N)
    j_ref = (-jj) % N
    same_row = (rows == mirror_rows)[:, None]
    primary = (rows < mirror_rows)[:, None] | (same_row & (jj <= j_ref)[None, :])
    self_conjugate = same_row & (jj == j_ref)[None, :]

    for p in (0, N // 2):
        own = field_k[:, :, p]
        mirror = sigma * (partner[:, 0, :, p] + 1j * partner[:, 1, :, p])
        mirror = mirror[:, j_ref]

        plane = jnp.where(primary, own, jnp.conj(mirror))
        plane = jnp.where(self_conjugate, jnp.sqrt(2.0) * own.real + 0j, plane)
        field_k = field_k.at[:, :, p].set(plane)

    return field_k

