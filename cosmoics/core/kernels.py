"""
Per-mode Fourier space operators.

A kernel is a tagged record: its kind selects the multiplier and its payload
carries whatever that multiplier needs. All kernels are evaluated through
evaluate_kernel and applied through apply_kernel; every kind maps k = 0 to
an explicit finite value.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Sequence
import jax.numpy as jnp

from .exceptions import NumericalError, ConfigurationError
from .fft_ops import SpectralGrid


class KernelKind(Enum):
    TRANSFER = 'transfer'
    INVERSE_TRANSFER = 'inverse_transfer'
    INVERSE_POISSON = 'inverse_poisson'
    DERIVATIVE = 'derivative'
    BARE_POWER = 'bare_power'


@dataclass(frozen=True)
class BarePowerParams:
    cosmology: Any
    white_noise_power: float


@dataclass(frozen=True)
class Kernel:
    kind: KernelKind
    payload: Any = None


def transfer_kernel(column: Callable) -> Kernel:
    """Multiply by T(k); column is a callable such as a TransferColumn."""
    return Kernel(KernelKind.TRANSFER, column)


def inverse_transfer_kernel(column: Callable) -> Kernel:
    """Divide by T(k)."""
    return Kernel(KernelKind.INVERSE_TRANSFER, column)


def inverse_poisson_kernel() -> Kernel:
    """Multiply by -1/k^2."""
    return Kernel(KernelKind.INVERSE_POISSON)


def derivative_kernel(axis: int) -> Kernel:
    """Multiply by i k_axis, i.e. d/dx_axis in real space."""
    if axis not in (0, 1, 2):
        raise ConfigurationError(f"Derivative axis must be 0, 1 or 2, got {axis}")
    return Kernel(KernelKind.DERIVATIVE, axis)


def bare_power_kernel(cosmology, white_noise_power: float) -> Kernel:
    """Turn unit-variance white noise into a field with the primordial power spectrum."""
    return Kernel(KernelKind.BARE_POWER, BarePowerParams(cosmology, white_noise_power))


def evaluate_kernel(kernel: Kernel, kx, ky, kz, k) -> jnp.ndarray:
    """
    Multiplier of each Fourier mode for the given kernel.

    Parameters:
    -----------
    kernel : Kernel
        Kernel kind and payload
    kx, ky, kz : jnp.ndarray
        Broadcastable wavevector components
    k : jnp.ndarray
        Wavevector magnitude on the full half-spectrum shape

    Returns:
    --------
    multiplier : jnp.ndarray
        Real or complex array broadcastable to the grid
    """
    kind = kernel.kind
    nonzero = k > 0

    if kind is KernelKind.TRANSFER:
        T = kernel.payload(k)
        return jnp.where(nonzero, T, 0.0)

    if kind is KernelKind.INVERSE_TRANSFER:
        T = kernel.payload(k)
        safe_T = jnp.where(nonzero, T, 1.0)
        return jnp.where(nonzero, 1.0 / safe_T, 0.0)

    if kind is KernelKind.INVERSE_POISSON:
        k2 = jnp.where(nonzero, k * k, 1.0)
        return jnp.where(nonzero, -1.0 / k2, 0.0)

    if kind is KernelKind.DERIVATIVE:
        component = (kx, ky, kz)[kernel.payload]
        return 1j * jnp.broadcast_to(component, k.shape)

    if kind is KernelKind.BARE_POWER:
        params = kernel.payload
        power = params.cosmology.primordial_power(k)
        return jnp.sqrt(power / params.white_noise_power)

    raise ConfigurationError(f"Unknown kernel kind: {kind}")


def apply_kernel(grid: SpectralGrid, field_k: jnp.ndarray, kernel: Kernel) -> jnp.ndarray:
    """
    Multiply every coefficient of a half spectrum by the kernel.

    Returns a new array; the input is left for the caller to drop.
    Non-finite output raises NumericalError.
    """
    grid._check_shape(field_k, grid.cshape, 'complex')

    zero_nyquist = kernel.kind is KernelKind.DERIVATIVE
    kx, ky, kz, k = grid.wavevectors(apply_nyquist_zeroing=zero_nyquist)

    out = field_k * evaluate_kernel(kernel, kx, ky, kz, k)

    if not bool(jnp.all(jnp.isfinite(out))):
        raise NumericalError(f"Kernel {kernel.kind.value} produced non-finite values")
    return out


def apply_kernels(grid: SpectralGrid, field_k: jnp.ndarray, kernels: Sequence[Kernel]) -> jnp.ndarray:
    """Apply a sequence of kernels in order."""
    for kernel in kernels:
        field_k = apply_kernel(grid, field_k, kernel)
    return field_k
