"""
Host-side model of planned transforms.

stockham_pass applies one Cooley-Tukey pass with the same index arithmetic
the generated kernels use (read at stride n/R, rotate, write at stride
`stride_out`), so running a plan's radices through it checks the
decomposition and the pass ordering without a GPU. reference_fft computes
the expected spectrum with FFTW.
"""

import logging
from typing import Sequence, Union

import numpy as np
import pyfftw
import pyfftw.interfaces.numpy_fft as fftw_fft

from .core import Axis, Direction, Plan
from .errors import ConfigurationError

logger = logging.getLogger("clfftplan.reference")

# numpy axis for each transform axis of a (z, y, x) shaped array
_NUMPY_AXIS = {Axis.X: -1, Axis.Y: -2, Axis.Z: -3}


def _sign(direction: Union[Direction, int]) -> int:
    if isinstance(direction, Direction):
        return direction.value
    return Direction(direction).value


def stockham_pass(data: np.ndarray, radix: int, stride_out: int,
                  direction: Union[Direction, int] = Direction.FORWARD) -> np.ndarray:
    """
    One radix pass along the last axis.

    Args:
        data: Complex array, transform along the last axis
        radix: Radix of this pass
        stride_out: Product of the radices of earlier passes
        direction: Twiddle sign

    Returns:
        New array holding the pass output
    """
    n = data.shape[-1]
    if n % radix or n % (radix * stride_out):
        raise ConfigurationError(f"radix {radix} with stride {stride_out} does not divide {n}", size=n)
    sign = _sign(direction)
    m = n // radix

    # x[..., k, t] = data[..., t + k * m]
    x = data.reshape(data.shape[:-1] + (radix, m))
    j = np.arange(radix)
    dft = np.exp(sign * 2j * np.pi * np.outer(j, j) / radix)
    y = np.einsum('jk,...kt->...jt', dft, x)

    t = np.arange(m)
    remaining = n // stride_out
    y = y * np.exp(sign * 2j * np.pi * np.outer(j, t // stride_out) / remaining)

    out_index = ((t // stride_out) * (radix * stride_out) + t % stride_out)[None, :] \
        + (j * stride_out)[:, None]
    out = np.empty_like(data, dtype=np.result_type(data.dtype, np.complex64))
    out[..., out_index] = y
    return out


def transform_axis(data: np.ndarray, radices: Sequence[int],
                   direction: Union[Direction, int] = Direction.FORWARD,
                   axis: int = -1) -> np.ndarray:
    """Apply every pass of a decomposition along one numpy axis."""
    moved = np.moveaxis(np.asarray(data), axis, -1)
    stride_out = 1
    for radix in radices:
        moved = stockham_pass(moved, radix, stride_out, direction)
        stride_out *= radix
    return np.moveaxis(moved, -1, axis)


def execute_plan(plan: Plan, data: np.ndarray, direction: Union[Direction, int] = Direction.FORWARD,
                 normalize: bool = False) -> np.ndarray:
    """
    Run a plan's kernels in order on the host.

    A local-memory kernel applies all of its radices; a global kernel applies
    the single radix of its pass.

    Args:
        plan: Plan to model
        data: Complex array shaped ``plan.size.array_shape``
        direction: Transform direction
        normalize: Scale by 1/N after the last kernel

    Returns:
        Transformed array (complex128)
    """
    data = np.asarray(data)
    if data.shape != plan.size.array_shape:
        raise ConfigurationError(f"data shape {data.shape} does not match plan shape "
                                 f"{plan.size.array_shape}")
    result = data.astype(np.complex128)
    for kernel in plan:
        axis = _NUMPY_AXIS[kernel.axis]
        if kernel.regime == 'local':
            result = transform_axis(result, kernel.radices, direction, axis)
        else:
            stride_out = int(np.prod(kernel.radices[:kernel.pass_index], dtype=np.int64))
            moved = np.moveaxis(result, axis, -1)
            moved = stockham_pass(moved, kernel.pass_radix, stride_out, direction)
            result = np.moveaxis(moved, -1, axis)
        logger.debug(f"modelled {kernel.name}")
    if normalize:
        result = result / plan.size.points
    return result


def reference_fft(data: np.ndarray, direction: Union[Direction, int] = Direction.FORWARD) -> np.ndarray:
    """
    Unnormalized n-dimensional DFT computed by FFTW.

    The inverse is scaled back up by N so both directions follow the kernels'
    convention of leaving normalization to the caller.
    """
    data = np.asarray(data, dtype=np.complex128)
    if _sign(direction) < 0:
        return fftw_fft.fftn(data, threads=1, planner_effort='FFTW_ESTIMATE')
    return fftw_fft.ifftn(data, threads=1, planner_effort='FFTW_ESTIMATE') * data.size


def random_signal(shape, seed: int = 0, dtype=np.complex64) -> np.ndarray:
    """Aligned random complex test signal."""
    rng = np.random.default_rng(seed)
    signal = pyfftw.empty_aligned(shape, dtype=dtype)
    signal[...] = rng.standard_normal(shape) + 1j * rng.standard_normal(shape)
    return signal
