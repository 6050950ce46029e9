"""
Binned power spectra of half-spectrum grids and bootstrap statistics.
"""
import numpy as np
import jax.numpy as jnp
from typing import Optional

from .data_models import PowerSpectrumBins, BootstrapStatistics
from .exceptions import ConfigurationError
from .fft_ops import SpectralGrid
from .k_grids import half_spectrum_weights

# Denominators at or below this magnitude make a ratio statistic zero
RATIO_TINY = 1e-300


def cross_power(
    grid: SpectralGrid,
    field_a: jnp.ndarray,
    field_b: jnp.ndarray,
    bins: int,
    k_max: Optional[float] = None
) -> PowerSpectrumBins:
    """
    Binned cross power spectrum Re(A conj(B)) of two half spectra.

    Bins are linear in |k| over [0, k_max], k_max defaulting to the Nyquist
    frequency; modes with larger |k| and the k = 0 mode are left out. Every
    stored mode with kz != 0 and kz != N/2 also stands for its conjugate and
    counts twice.

    Parameters:
    -----------
    grid : SpectralGrid
        Geometry shared by both fields
    field_a, field_b : jnp.ndarray
        Complex (N, N, N//2+1) spectra in the continuum normalization
    bins : int
        Number of bins
    k_max : float, optional
        Upper edge of the last bin

    Returns:
    --------
    PowerSpectrumBins
        Mean k, mean power and (weighted) number of modes per bin. Empty
        bins report the bin centre, zero power and zero modes.
    """
    grid._check_shape(field_a, grid.cshape, 'complex')
    grid._check_shape(field_b, grid.cshape, 'complex')
    if bins <= 0:
        raise ConfigurationError("Number of power spectrum bins must be positive")
    if k_max is None:
        k_max = grid.k_nyquist

    _, _, _, k = grid.wavevectors()
    multiplicity = half_spectrum_weights(grid.N)
    valid = (k > 0) & (k <= k_max)
    w = jnp.where(valid, multiplicity, 0.0).ravel()

    index = jnp.minimum(jnp.floor(k / k_max * bins).astype(jnp.int32), bins - 1).ravel()
    index = jnp.where(w > 0, index, 0)
    power = jnp.real(field_a * jnp.conj(field_b)).ravel()

    counts = jnp.bincount(index, weights=w, length=bins)
    k_sum = jnp.bincount(index, weights=w * k.ravel(), length=bins)
    p_sum = jnp.bincount(index, weights=w * power, length=bins)

    centres = (jnp.arange(bins) + 0.5) * (k_max / bins)
    filled = counts > 0
    safe_counts = jnp.where(filled, counts, 1.0)

    return PowerSpectrumBins(
        k=jnp.where(filled, k_sum / safe_counts, centres),
        power=jnp.where(filled, p_sum / safe_counts, 0.0),
        counts=counts
    )


def auto_power(grid: SpectralGrid, field_k: jnp.ndarray, bins: int,
               k_max: Optional[float] = None) -> PowerSpectrumBins:
    return cross_power(grid, field_k, field_k, bins, k_max)


def safe_ratio(numerator: np.ndarray, denominator: np.ndarray, tiny: float = RATIO_TINY) -> np.ndarray:
    """numerator / denominator, with 0 wherever |denominator| <= tiny."""
    ok = np.abs(denominator) > tiny
    return np.where(ok, numerator / np.where(ok, denominator, 1.0), 0.0)


def _mean_var(samples: np.ndarray):
    """
    Per-bin mean and unbiased variance over the sample axis.

    Deviations are taken from the first sample so that identical samples
    give exactly their common value and exactly zero variance.
    """
    shift = samples[0]
    d = samples - shift
    mean_d = d.mean(axis=0)
    var = ((d - mean_d) ** 2).sum(axis=0) / (samples.shape[0] - 1)
    return shift + mean_d, var


def summarize_bootstrap(
    k: np.ndarray,
    counts: np.ndarray,
    cross: np.ndarray,
    halo: np.ndarray,
    matter: np.ndarray,
    reconstructed: np.ndarray
) -> BootstrapStatistics:
    """
    Combine per-sample spectra of shape (num_samples, bins) into statistics.

    Bins with counts <= 1 are dropped from every statistic. The correlation
    coefficient is cross / sqrt(halo * matter) and the bias is
    cross / reconstructed, evaluated per sample before averaging.
    """
    cross = np.asarray(cross, dtype=np.float64)
    halo = np.asarray(halo, dtype=np.float64)
    matter = np.asarray(matter, dtype=np.float64)
    reconstructed = np.asarray(reconstructed, dtype=np.float64)

    if cross.ndim != 2 or cross.shape[0] < 2:
        raise ConfigurationError("Bootstrap statistics need at least two samples of shape (num_samples, bins)")
    for other in (halo, matter, reconstructed):
        if other.shape != cross.shape:
            raise ConfigurationError("Bootstrap spectra must all have the same shape")

    keep = np.asarray(counts) > 1

    correlation = safe_ratio(cross, np.sqrt(np.maximum(halo * matter, 0.0)))
    bias = safe_ratio(cross, reconstructed)

    cross_mean, cross_var = _mean_var(cross[:, keep])
    halo_mean, _ = _mean_var(halo[:, keep])
    matter_mean, _ = _mean_var(matter[:, keep])
    rec_mean, rec_var = _mean_var(reconstructed[:, keep])
    bias_mean, bias_var = _mean_var(bias[:, keep])
    corr_mean, corr_var = _mean_var(correlation[:, keep])

    return BootstrapStatistics(
        k=np.asarray(k)[keep],
        counts=np.asarray(counts)[keep],
        cross_mean=cross_mean,
        cross_var=cross_var,
        halo_mean=halo_mean,
        matter_mean=matter_mean,
        reconstructed_mean=rec_mean,
        reconstructed_var=rec_var,
        bias_mean=bias_mean,
        bias_var=bias_var,
        correlation_mean=corr_mean,
        correlation_var=corr_var
    )


def format_bias_report(stats: BootstrapStatistics) -> str:
    """The two plain-text tables of the velocity bias analysis, one row per retained bin."""
    lines = ["k Pk_cross_mean Pk_halo_mean Pk_matter_mean correlation_mean correlation_var"]
    for i in range(stats.k.shape[0]):
        lines.append("%e %e %e %e %e %e" % (
            stats.k[i], stats.cross_mean[i], stats.halo_mean[i], stats.matter_mean[i],
            stats.correlation_mean[i], stats.correlation_var[i]))
    lines.append("")
    lines.append("k Pk_reconstruct_mean Pk_bootstrap_mean Pk_reconstruct_var Pk_bootstrap_var bias_mean bias_var")
    for i in range(stats.k.shape[0]):
        lines.append("%e %e %e %e %e %e %e" % (
            stats.k[i], stats.reconstructed_mean[i], stats.cross_mean[i], stats.reconstructed_var[i],
            stats.cross_var[i], stats.bias_mean[i], stats.bias_var[i]))
    return "\n".join(lines)
