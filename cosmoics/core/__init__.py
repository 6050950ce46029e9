"""
Pure JAX implementations of the spectral grid algorithms.

This module contains the array-level building blocks: normalized FFTs,
Fourier kernels, transfer function interpolation, Gaussian random fields,
mass assignment and power spectrum estimation.
"""
import jax

jax.config.update("jax_enable_x64", True)

from .exceptions import (
    CosmoICsError, ConfigurationError, GridError, GridFileError, NumericalError, SimulationError
)
from .fft_ops import SpectralGrid, wrap_index, shrink_grid, check_same_grid
from .k_grids import create_wavevectors, fft_frequencies
from .kernels import (
    Kernel, KernelKind, apply_kernel, apply_kernels, evaluate_kernel,
    transfer_kernel, inverse_transfer_kernel, inverse_poisson_kernel,
    derivative_kernel, bare_power_kernel
)
from .transfers import TransferFunctionTable, TransferSpline, TransferColumn
from .noise import generate_complex_grf
from .mass_assignment import deposit, interpolate, kernel_weight, density_contrast
from .power_spectrum import cross_power, auto_power, summarize_bootstrap, format_bias_report
from .buffers import GridPool
from .decomposition import SlabDecomposition, gather_slabs, allreduce_grid, get_communicator

__all__ = [
    'CosmoICsError', 'ConfigurationError', 'GridError', 'GridFileError',
    'NumericalError', 'SimulationError',
    'SpectralGrid', 'wrap_index', 'shrink_grid', 'check_same_grid',
    'create_wavevectors', 'fft_frequencies',
    'Kernel', 'KernelKind', 'apply_kernel', 'apply_kernels', 'evaluate_kernel',
    'transfer_kernel', 'inverse_transfer_kernel', 'inverse_poisson_kernel',
    'derivative_kernel', 'bare_power_kernel',
    'TransferFunctionTable', 'TransferSpline', 'TransferColumn',
    'generate_complex_grf',
    'deposit', 'interpolate', 'kernel_weight', 'density_contrast',
    'cross_power', 'auto_power', 'summarize_bootstrap', 'format_bias_report',
    'GridPool',
    'SlabDecomposition', 'gather_slabs', 'allreduce_grid', 'get_communicator',
]
