"""
Construction of the per-scale dirty maps, PSFs and basis functions used by
the multiscale CLEAN.

All three stacks are numpy arrays with shape (n_scales, image_size,
image_size), indexed [scale, x, y]. Every Gaussian is centered on the pixel
(image_size // 2, image_size // 2).
"""

import numpy as np
import dask
import toolviper.utils.logger as logger

from astroclean.utils.data_partitioning import divide_range

PSF_SIGMA_STEP = 0.5
BASIS_SIGMA_STEP = 2.0


def _check_stack_size(n_scales, image_size):
    if not (isinstance(n_scales, (int, np.integer)) and n_scales > 0):
        raise ValueError("Number of scales must be a positive integer.")
    if not (isinstance(image_size, (int, np.integer)) and image_size > 0):
        raise ValueError("Image size must be a positive integer.")


def psf_sigma(scale):
    return 1.0 + scale * PSF_SIGMA_STEP


def basis_sigma(scale):
    return 1.0 + scale * BASIS_SIGMA_STEP


def gaussian_grid(image_size, sigma):
    """
    Un-normalized circular Gaussian with peak 1 at the image center.

    Parameters
    ----------
    image_size : int
        Grid is image_size x image_size.
    sigma : float
        Gaussian width in pixels.

    Returns
    -------
    numpy.ndarray
        (image_size, image_size) float64 grid.
    """
    center = image_size // 2
    offsets = np.arange(image_size, dtype=np.float64) - center
    dx, dy = np.meshgrid(offsets, offsets, indexing="ij")
    distance_sq = dx * dx + dy * dy
    return np.exp(-distance_sq / (2.0 * sigma * sigma))


def make_psfs(n_scales, image_size):
    """
    Build one PSF per scale. Scale s has sigma = 1 + 0.5 * s and is
    normalized to unit sum.
    """
    _check_stack_size(n_scales, image_size)
    logger.info("Creating PSFs...")

    psfs = np.zeros((n_scales, image_size, image_size), dtype=np.float64)
    for s in range(n_scales):
        logger.debug(f"  PSF scale {s + 1}/{n_scales}, sigma {psf_sigma(s)}")
        psfs[s] = gaussian_grid(image_size, psf_sigma(s))
        total = psfs[s].sum()
        if total > 0:
            psfs[s] /= total

    return psfs


def make_basis_functions(n_scales, image_size):
    """
    Build one un-normalized basis function per scale, sigma = 1 + 2 * s.
    """
    _check_stack_size(n_scales, image_size)
    logger.info("Creating basis functions...")

    basis_functions = np.zeros((n_scales, image_size, image_size), dtype=np.float64)
    for s in range(n_scales):
        basis_functions[s] = gaussian_grid(image_size, basis_sigma(s))

    return basis_functions


def make_scale_bias(n_scales):
    """Default per-scale weights used to rank peaks across scales."""
    return 1.0 / np.sqrt(np.arange(1, n_scales + 1, dtype=np.float64))


def unique_frequencies(frequencies):
    """
    Unique values of ``frequencies`` in first-seen order.

    Examples
    --------
    >>> unique_frequencies([2.0, 1.0, 2.0, 3.0])
    [2.0, 1.0, 3.0]
    """
    seen = set()
    unique = []
    for freq in frequencies:
        if freq not in seen:
            seen.add(freq)
            unique.append(freq)
    return unique


def sample_scale_index(sample_index, n_unique, n_scales):
    """
    Scale a sample is splatted into: floor(i / U * N) clamped to N - 1.

    The scale follows the position of the sample in the file, not its
    amplitude or frequency.
    """
    scale_index = int(float(sample_index) / float(n_unique) * float(n_scales))
    if scale_index >= n_scales:
        scale_index = n_scales - 1
    return scale_index


def _accumulate_samples(amplitudes, start, stop, n_unique, gaussian_lookup):
    """Sum the samples [start, stop) into a stack private to this chunk."""
    n_scales = gaussian_lookup.shape[0]
    local_maps = np.zeros_like(gaussian_lookup)
    for i in range(start, min(stop, n_unique)):
        scale_index = sample_scale_index(i, n_unique, n_scales)
        local_maps[scale_index] += amplitudes[i] * gaussian_lookup[scale_index]
    return local_maps


def make_dirty_maps(amplitudes, frequencies, n_scales, image_size, n_workers=1):
    """
    Splat every amplitude sample as a centered Gaussian into one dirty map.

    Only the first U samples are used, U being the number of unique
    frequencies. Sample i goes to scale floor(i / U * N) and is added with
    the basis-function sigma of that scale.

    Parameters
    ----------
    amplitudes : sequence of float
        Amplitude samples.
    frequencies : sequence of float
        Frequencies, only their number of unique values is used.
    n_scales : int
        Number of scales N.
    image_size : int
        Side of the square dirty maps.
    n_workers : int
        Number of sample chunks accumulated in parallel.

    Returns
    -------
    numpy.ndarray
        (n_scales, image_size, image_size) dirty maps.
    """
    _check_stack_size(n_scales, image_size)
    logger.info("Creating dirty maps from ACB data...")

    amplitudes = np.asarray(amplitudes, dtype=np.float64)
    n_unique = len(unique_frequencies(frequencies))
    logger.info(f"Found {n_unique} unique frequencies")
    logger.info(f"Using {len(amplitudes)} amplitude values")

    dirty_maps = np.zeros((n_scales, image_size, image_size), dtype=np.float64)
    if n_unique == 0 or len(amplitudes) == 0:
        return dirty_maps

    lookup_graph = [
        dask.delayed(gaussian_grid)(image_size, basis_sigma(s)) for s in range(n_scales)
    ]
    gaussian_lookup = np.stack(
        dask.compute(*lookup_graph, scheduler="threads", num_workers=n_workers)
    )

    chunks = [c for c in divide_range(len(amplitudes), n_workers) if c[0] < n_unique]
    graph = [
        dask.delayed(_accumulate_samples)(
            amplitudes, start, stop, n_unique, gaussian_lookup
        )
        for start, stop in chunks
    ]
    local_maps = dask.compute(*graph, scheduler="threads", num_workers=n_workers)

    for chunk_maps in local_maps:
        dirty_maps += chunk_maps

    return dirty_maps


def make_scale_stacks(amplitudes, frequencies, n_scales, image_size, n_workers=1):
    """
    Build everything the multiscale CLEAN needs.

    Returns
    -------
    dirty_maps, psfs, basis_functions : numpy.ndarray
        Index aligned (n_scales, image_size, image_size) stacks.
    scale_bias : numpy.ndarray
        (n_scales,) weights.
    """
    dirty_maps = make_dirty_maps(
        amplitudes, frequencies, n_scales, image_size, n_workers=n_workers
    )
    psfs = make_psfs(n_scales, image_size)
    basis_functions = make_basis_functions(n_scales, image_size)
    scale_bias = make_scale_bias(n_scales)
    return dirty_maps, psfs, basis_functions, scale_bias
