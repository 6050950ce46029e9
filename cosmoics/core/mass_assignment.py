"""
Pure JAX implementation of mass assignment between points and grids.

Grid node n of an axis sits at position n * boxlen / N. A point at grid
coordinate X touches the nodes floor(X) + floor(frac - s) ... floor(X) +
floor(frac + s), where frac = X - floor(X) and s is the kernel support.
Deposit and interpolation share this window, and indices outside [0, N)
wrap periodically.
"""
import jax.numpy as jnp
from typing import Tuple

from .exceptions import ConfigurationError, NumericalError
from .fft_ops import wrap_index

# Half width of the support of each kernel, in cells
SUPPORT = {
    'cic': 1.0,
    'tsc': 1.5,
}


def kernel_weight(d: jnp.ndarray, scheme: str = 'tsc') -> jnp.ndarray:
    """
    One-dimensional assignment weight at distance d (in cells).

    TSC: 0.75 - d^2 for |d| < 0.5, 0.5 (1.5 - |d|)^2 for |d| < 1.5, else 0.
    CIC: 1 - |d| for |d| < 1, else 0.
    """
    ad = jnp.abs(d)
    if scheme == 'tsc':
        return jnp.where(ad < 0.5, 0.75 - ad * ad,
                         jnp.where(ad < 1.5, 0.5 * (1.5 - ad) ** 2, 0.0))
    if scheme == 'cic':
        return jnp.where(ad < 1.0, 1.0 - ad, 0.0)
    raise ConfigurationError(f"Unknown mass assignment scheme: {scheme}")


def _window(X: jnp.ndarray, scheme: str) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """Unwrapped node indices and weights, each of shape (n, width)."""
    if scheme not in SUPPORT:
        raise ConfigurationError(f"Unknown mass assignment scheme: {scheme}")
    s = SUPPORT[scheme]
    width = int(2 * s) + 1

    iX = jnp.floor(X)
    left = jnp.floor((X - iX) - s)
    nodes = iX[:, None] + left[:, None] + jnp.arange(width)[None, :]
    weights = kernel_weight(X[:, None] - nodes, scheme)
    return nodes.astype(jnp.int64), weights


def _stencil(positions: jnp.ndarray, N: int, boxlen: float, scheme: str):
    """Flat wrapped grid indices and product weights, each of shape (n, width^3)."""
    X = jnp.asarray(positions) * (N / boxlen)
    nx, wx = _window(X[:, 0], scheme)
    ny, wy = _window(X[:, 1], scheme)
    nz, wz = _window(X[:, 2], scheme)

    idx = wrap_index(nx[:, :, None, None], ny[:, None, :, None], nz[:, None, None, :], N)
    w = wx[:, :, None, None] * wy[:, None, :, None] * wz[:, None, None, :]

    n = X.shape[0]
    return idx.reshape(n, -1), w.reshape(n, -1)


def deposit(
    positions: jnp.ndarray,
    weights: jnp.ndarray,
    N: int,
    boxlen: float,
    scheme: str = 'tsc'
) -> jnp.ndarray:
    """
    Scatter weighted points onto a density grid.

    Each point adds weight * w(dx) w(dy) w(dz) / cell_volume to the nodes of
    its window; collisions accumulate through a scatter-add.

    Parameters:
    -----------
    positions : jnp.ndarray
        (n, 3) positions in box units
    weights : jnp.ndarray
        (n,) weights, e.g. masses, ones, or weight times a velocity component
    N : int
        Grid size
    boxlen : float
        Physical box size
    scheme : str
        'tsc' or 'cic'

    Returns:
    --------
    grid : jnp.ndarray
        (N, N, N) density grid with sum(grid) * cell_volume == sum(weights)
    """
    cell_volume = (boxlen / N) ** 3
    idx, w = _stencil(positions, N, boxlen, scheme)
    contrib = w * (jnp.asarray(weights) / cell_volume)[:, None]

    grid = jnp.zeros(N * N * N, dtype=contrib.dtype)
    grid = grid.at[idx.ravel()].add(contrib.ravel())
    return grid.reshape(N, N, N)


def interpolate(
    grid: jnp.ndarray,
    positions: jnp.ndarray,
    boxlen: float,
    scheme: str = 'tsc'
) -> jnp.ndarray:
    """Evaluate a grid at (n, 3) positions with the same kernel window as deposit."""
    N = grid.shape[0]
    idx, w = _stencil(positions, N, boxlen, scheme)
    values = jnp.asarray(grid).ravel()[idx]
    return jnp.sum(values * w, axis=1)


def density_contrast(grid: jnp.ndarray, total_weight: float, boxlen: float) -> jnp.ndarray:
    """(rho - nbar) / nbar with nbar = total_weight / boxlen^3."""
    nbar = total_weight / boxlen**3
    if nbar <= 0:
        raise NumericalError("Cannot form a density contrast without any weight")
    return (grid - nbar) / nbar
