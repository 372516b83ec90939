"""
Full (non circular) linear convolution of two 2D grids.

The direct method splits the rows of the first grid into partitions and runs
one numba kernel per partition. Every partition accumulates into its own
output buffer and the buffers are summed after the dask barrier, in partition
order, so a fixed number of workers always gives the same bits.
"""

import numpy as np
from numba import jit
import dask

from astroclean.utils.data_partitioning import divide_range

CONVOLUTION_METHODS = ["direct", "fft"]


@jit(nopython=True, cache=True, nogil=True)
def _convolve_rows_jit(a, b, row_start, row_end, out):
    """
    Accumulate rows [row_start, row_end) of a convolved with b into out.

    Parameters
    ----------
    a : float array
        (h1, w1)
    b : float array
        (h2, w2)
    row_start, row_end : int
        Row range of a handled by this call.
    out : float array
        (h1 + h2 - 1, w1 + w2 - 1), private to this call.
    """
    w1 = a.shape[1]
    h2, w2 = b.shape
    for i in range(row_start, row_end):
        for j in range(w1):
            a_ij = a[i, j]
            for k in range(h2):
                for l in range(w2):
                    out[i + k, j + l] += a_ij * b[k, l]


def _convolve_partition(a, b, row_start, row_end):
    out = np.zeros(
        (a.shape[0] + b.shape[0] - 1, a.shape[1] + b.shape[1] - 1), dtype=np.float64
    )
    _convolve_rows_jit(a, b, row_start, row_end, out)
    return out


def _check_convolve_input(arr, name):
    arr = np.ascontiguousarray(arr, dtype=np.float64)
    if arr.ndim != 2:
        raise ValueError(f"{name} must be a 2D array, got {arr.ndim} dimensions.")
    if arr.size == 0:
        raise ValueError(f"{name} must not be empty.")
    return arr


def convolve(a, b, n_workers=1, method="direct"):
    """
    Linear 2D convolution of ``a`` and ``b``.

    Parameters
    ----------
    a : array_like
        First grid with shape (h1, w1).
    b : array_like
        Second grid with shape (h2, w2).
    n_workers : int
        Number of row partitions (and threads) used by the direct method.
    method : str
        'direct' (exact accumulation, default) or 'fft' (scipy fftconvolve).

    Returns
    -------
    numpy.ndarray
        Grid with shape (h1 + h2 - 1, w1 + w2 - 1) where
        ``out[i + k, j + l] += a[i, j] * b[k, l]``.
    """
    a = _check_convolve_input(a, "a")
    b = _check_convolve_input(b, "b")

    if method == "fft":
        from scipy.signal import fftconvolve

        return fftconvolve(a, b, mode="full")
    elif method != "direct":
        raise ValueError(
            f"Convolution method '{method}' not recognized. Use one of {CONVOLUTION_METHODS}."
        )

    chunks = [c for c in divide_range(a.shape[0], n_workers) if c[1] > c[0]]

    if len(chunks) == 1:
        return _convolve_partition(a, b, *chunks[0])

    graph = [dask.delayed(_convolve_partition)(a, b, start, stop) for start, stop in chunks]
    partials = dask.compute(*graph, scheduler="threads", num_workers=n_workers)

    out = partials[0]
    for partial in partials[1:]:
        out += partial
    return out
