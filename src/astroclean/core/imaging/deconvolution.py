import numpy as np
import copy
import math
from collections import namedtuple
from typing import Callable, Optional

import dask
import toolviper.utils.logger as logger

from astroclean.core.imaging.convolution import convolve, CONVOLUTION_METHODS

Point = namedtuple("Point", ["x", "y"])

# Minor cycle stop codes
MINOR_CONTINUE = 0  # Continue iterations
MINOR_ITER_LIMIT = 1  # Reached the iteration limit (niter)
MINOR_THRESHOLD = 2  # Peak intensity of the selected scale below threshold
MINOR_CONVERGED = 3  # Every residual pixel below residual_threshold
MINOR_DEGENERATE = 4  # Non-finite peak or non-positive cross-convolution peak

MINOR_STOPCODE_DESCRIPTIONS = {
    MINOR_CONTINUE: "Continue iterations",
    MINOR_ITER_LIMIT: "Reached the iteration limit",
    MINOR_THRESHOLD: "Maximum intensity below threshold",
    MINOR_CONVERGED: "All residuals below residual threshold",
    MINOR_DEGENERATE: "Degenerate peak or cross-convolution, no further improvement possible",
}


def progress_callback(
    iter_num: int,
    scale: int,
    px: int,
    py: int,
    peak: float,
    niter_log: int = 1,
):
    """
    Callback function to log progress during the CLEAN iterations.

    Parameters:
    -----------
    iter_num: int
        Current iteration number (0 based).
    scale: int
        Scale selected for this iteration.
    px: int
        X-coordinate of the current peak.
    py: int
        Y-coordinate of the current peak.
    peak: float
        Value of the current peak.
    niter_log: int
        Frequency of logging iterations (default is every iteration).
    """
    if iter_num % niter_log == 0:
        logger.info(
            f"  Iteration {iter_num + 1}, scale {scale}, peak at ({px}, {py}): {peak:.6f}"
        )


def _validate_deconv_params(deconv_params):
    """
    Validate and set default deconvolution parameters if unspecified.
    deconv_params: Dictionary containing deconvolution parameters such as:
        - 'gain': CLEAN loop gain (float, default=0.1)
        - 'niter': Maximum number of iterations (int, default=50)
        - 'threshold': Stop when the selected peak falls below this (float, default=1e-5)
        - 'residual_threshold': Stop when every residual falls below this (float, default=1e-5)
        - 'n_workers': Number of threads per parallel phase (int, default=1)
        - 'convolution_method': 'direct' or 'fft' (str, default='direct')
    """

    if deconv_params is None:
        deconv_params = {}

    default_params = {
        "gain": 0.1,
        "niter": 50,
        "threshold": 1e-5,
        "residual_threshold": 1e-5,
        "n_workers": 1,
        "convolution_method": "direct",
    }

    for key, default_value in default_params.items():
        if key not in deconv_params:
            logger.debug(
                f"Deconvolution parameter '{key}' not specified. Using default: {default_value}"
            )
            deconv_params[key] = default_value
        else:
            if key == "gain":
                if not (0 < deconv_params[key] <= 1):
                    raise ValueError("CLEAN gain must be between 0 and 1.")
            elif key in ("niter", "n_workers"):
                value = deconv_params[key]
                if not (
                    isinstance(value, int) and not isinstance(value, bool) and value > 0
                ):
                    raise ValueError(f"'{key}' must be a positive integer.")
            elif key in ("threshold", "residual_threshold"):
                if deconv_params[key] is None or deconv_params[key] < 0:
                    raise ValueError(f"'{key}' must be non-negative.")
            elif key == "convolution_method":
                if deconv_params[key] not in CONVOLUTION_METHODS:
                    raise ValueError(
                        f"Convolution method must be one of {CONVOLUTION_METHODS}."
                    )

    return deconv_params


def _check_stacks(dirty_maps, psfs, basis_functions, scale_bias):
    for name, stack in (
        ("dirty_maps", dirty_maps),
        ("psfs", psfs),
        ("basis_functions", basis_functions),
    ):
        if not isinstance(stack, np.ndarray) or stack.ndim != 3:
            raise ValueError(
                f"{name} must be a 3D numpy array with shape (n_scales, nx, ny)"
            )
        if stack.shape[0] == 0:
            raise ValueError(f"{name} must hold at least one scale")

    if psfs.shape[0] != dirty_maps.shape[0] or basis_functions.shape[0] != dirty_maps.shape[0]:
        raise ValueError(
            f"dirty_maps, psfs and basis_functions must have the same number of scales. "
            f"Got {dirty_maps.shape[0]}, {psfs.shape[0]} and {basis_functions.shape[0]}"
        )
    if len(scale_bias) != dirty_maps.shape[0]:
        raise ValueError(
            f"scale_bias must have one weight per scale. Got {len(scale_bias)} for {dirty_maps.shape[0]} scales"
        )


def rescale_dirty_maps(dirty_maps, scale_bias):
    """Copy of the dirty maps with scale s multiplied by scale_bias[s]."""
    return dirty_maps * np.asarray(scale_bias, dtype=np.float64)[:, None, None]


def identify_max_scale(rescaled_dirty_maps):
    """Scale holding the largest value. First occurrence in (scale, x, y) order wins."""
    flat_index = np.argmax(rescaled_dirty_maps)
    return int(np.unravel_index(flat_index, rescaled_dirty_maps.shape)[0])


def identify_max_position(image):
    """Position and value of the largest pixel. First occurrence in (x, y) order wins."""
    px, py = np.unravel_index(np.argmax(image), image.shape)
    return Point(int(px), int(py)), float(image[px, py])


def _overlap_slices(image_shape, kernel_shape, max_pos):
    """
    Slices of image and kernel that overlap when the kernel center
    (kernel_shape // 2) is placed at max_pos.
    """
    slices_image = []
    slices_kernel = []
    for n_image, n_kernel, pos in zip(image_shape, kernel_shape, max_pos):
        offset = pos - n_kernel // 2
        start = max(0, offset)
        stop = min(n_image, offset + n_kernel)
        if stop <= start:
            return None
        slices_image.append(slice(start, stop))
        slices_kernel.append(slice(start - offset, stop - offset))
    return tuple(slices_image), tuple(slices_kernel)


def update_clean_components(
    clean_components, basis_function, max_pos, max_intensity, cross_auto_max, gain
):
    """Add gain * max_intensity / max(cross_auto) * basis_function centered on max_pos."""
    norm_factor = max_intensity / cross_auto_max
    overlap = _overlap_slices(clean_components.shape, basis_function.shape, max_pos)
    if overlap is None:
        return
    slices_image, slices_kernel = overlap
    clean_components[slices_image] += gain * norm_factor * basis_function[slices_kernel]


def _subtract_cross_convolution(dirty_map, cross_conv, cross_conv_max, max_pos, max_intensity, gain):
    norm_factor = gain * max_intensity / cross_conv_max
    overlap = _overlap_slices(dirty_map.shape, cross_conv.shape, max_pos)
    if overlap is None:
        return
    slices_image, slices_kernel = overlap
    dirty_map[slices_image] -= norm_factor * cross_conv[slices_kernel]


def update_dirty_maps(dirty_maps, cross_convs, cross_conv_maxs, max_pos, max_intensity, gain, n_workers=1):
    """
    Subtract the selected component from the residual of every scale.

    One task per scale. Each task writes only to its own dirty map, so no
    lock is needed.
    """
    graph = [
        dask.delayed(_subtract_cross_convolution)(
            dirty_maps[s], cross_convs[s], cross_conv_maxs[s], (max_pos.x, max_pos.y), max_intensity, gain
        )
        for s in range(dirty_maps.shape[0])
    ]
    dask.compute(*graph, scheduler="threads", num_workers=n_workers)


def stopping_condition(dirty_maps, residual_threshold):
    return bool(np.all(np.abs(dirty_maps) <= residual_threshold))


def add_residuals(clean_components, dirty_maps):
    """Clean components plus the residual summed over all scales."""
    return clean_components + dirty_maps.sum(axis=0)


class _CrossConvolutionCache:
    """
    convolve(basis_functions[b], psfs[p]) and its maximum, computed once per
    (b, p) pair for a run. Inputs are read only during the CLEAN.
    """

    def __init__(self, psfs, basis_functions, n_workers, method):
        self.psfs = psfs
        self.basis_functions = basis_functions
        self.n_workers = n_workers
        self.method = method
        self._cache = {}

    def _compute(self, basis_scale, psf_scale, n_workers):
        cross_conv = convolve(
            self.basis_functions[basis_scale],
            self.psfs[psf_scale],
            n_workers=n_workers,
            method=self.method,
        )
        return cross_conv, float(np.max(cross_conv))

    def get_all(self, basis_scale):
        """Cross-convolutions of one basis function against every PSF."""
        missing = [
            p
            for p in range(self.psfs.shape[0])
            if (basis_scale, p) not in self._cache
        ]
        if missing:
            # Workers are shared between the per-scale tasks and the row
            # partitions of each convolution.
            n_row_workers = max(1, self.n_workers // len(missing))
            graph = [
                dask.delayed(self._compute)(basis_scale, p, n_row_workers)
                for p in missing
            ]
            computed = dask.compute(
                *graph, scheduler="threads", num_workers=self.n_workers
            )
            for p, value in zip(missing, computed):
                self._cache[(basis_scale, p)] = value

        cross_convs = [self._cache[(basis_scale, p)][0] for p in range(self.psfs.shape[0])]
        cross_conv_maxs = [self._cache[(basis_scale, p)][1] for p in range(self.psfs.shape[0])]
        return cross_convs, cross_conv_maxs


def _is_degenerate(value):
    return not math.isfinite(value) or value <= 0


def multiscale_clean_arrays(
    dirty_maps: np.ndarray,
    psfs: np.ndarray,
    basis_functions: np.ndarray,
    scale_bias,
    deconv_params: Optional[dict] = None,
    progress_callback: Optional[Callable] = progress_callback,
):
    """
    Run the multiscale CLEAN loop.

    Parameters:
    -----------
    dirty_maps: np.ndarray
        (n_scales, nx, ny) dirty map per scale. Not modified.
    psfs: np.ndarray
        (n_scales, nx, ny) normalized PSF per scale.
    basis_functions: np.ndarray
        (n_scales, nx, ny) basis function per scale.
    scale_bias: sequence of float
        One weight per scale, only used to select the scale.
    deconv_params: dict or None
        See _validate_deconv_params.
    progress_callback: callable or None
        Called as progress_callback(iter_num, scale, px, py, peak) once per
        iteration, after the peak is found.

    Returns:
    --------
    results: dict
        Statistics of the run (iter_done, stop_code, peaks, ...).
        iter_done is not incremented on the iteration that meets the
        residual threshold, so after a MINOR_CONVERGED stop peaks holds
        iter_done + 1 records.
    model_array: np.ndarray
        (nx, ny) clean components.
    residual_maps: np.ndarray
        (n_scales, nx, ny) residual dirty maps.
    """
    deconv_params = _validate_deconv_params(copy.deepcopy(deconv_params))
    _check_stacks(dirty_maps, psfs, basis_functions, scale_bias)

    gain = deconv_params["gain"]
    niter = deconv_params["niter"]
    threshold = deconv_params["threshold"]
    residual_threshold = deconv_params["residual_threshold"]
    n_workers = deconv_params["n_workers"]

    logger.info("Starting Multi-scale CLEAN algorithm...")

    clean_components = np.zeros(dirty_maps.shape[1:], dtype=np.float64)
    current_dirty_maps = np.array(dirty_maps, dtype=np.float64, copy=True)
    cross_conv_cache = _CrossConvolutionCache(
        psfs, basis_functions, n_workers, deconv_params["convolution_method"]
    )

    peaks = []
    stop_code = MINOR_ITER_LIMIT
    iter_count = 0

    while iter_count < niter:
        rescaled_dirty_maps = rescale_dirty_maps(current_dirty_maps, scale_bias)
        max_scale = identify_max_scale(rescaled_dirty_maps)
        max_pos, max_intensity = identify_max_position(current_dirty_maps[max_scale])

        if progress_callback is not None:
            progress_callback(iter_count, max_scale, max_pos.x, max_pos.y, max_intensity)

        if max_intensity < threshold:
            logger.info("  Maximum intensity too low, stopping.")
            stop_code = MINOR_THRESHOLD
            break

        if not math.isfinite(max_intensity):
            logger.warning(
                f"  Non-finite peak in the dirty map of scale {max_scale}, stopping."
            )
            stop_code = MINOR_DEGENERATE
            break

        cross_convs, cross_conv_maxs = cross_conv_cache.get_all(max_scale)
        if any(_is_degenerate(value) for value in cross_conv_maxs):
            logger.warning(
                f"  Cross-convolution of basis function {max_scale} has no positive peak, stopping."
            )
            stop_code = MINOR_DEGENERATE
            break

        peaks.append(
            {
                "iteration": iter_count,
                "scale": max_scale,
                "position": (max_pos.x, max_pos.y),
                "intensity": max_intensity,
            }
        )

        update_clean_components(
            clean_components,
            basis_functions[max_scale],
            max_pos,
            max_intensity,
            cross_conv_maxs[max_scale],
            gain,
        )
        update_dirty_maps(
            current_dirty_maps,
            cross_convs,
            cross_conv_maxs,
            max_pos,
            max_intensity,
            gain,
            n_workers=n_workers,
        )

        if stopping_condition(current_dirty_maps, residual_threshold):
            logger.info("  Stopping condition met, ending iterations.")
            stop_code = MINOR_CONVERGED
            break

        iter_count += 1

    logger.info(f"Multi-scale CLEAN completed in {iter_count} iterations")

    results = {
        "iter_done": iter_count,
        "niter": niter,
        "gain": gain,
        "threshold": threshold,
        "residual_threshold": residual_threshold,
        "stop_code": stop_code,
        "stop_description": MINOR_STOPCODE_DESCRIPTIONS[stop_code],
        "peaks": peaks,
    }

    return results, clean_components, current_dirty_maps


def multiscale_clean(
    dirty_maps: np.ndarray,
    psfs: np.ndarray,
    basis_functions: np.ndarray,
    scale_bias,
    deconv_params: Optional[dict] = None,
    progress_callback: Optional[Callable] = progress_callback,
):
    """
    Multiscale CLEAN returning the final image, i.e. the clean components
    plus the residuals of every scale.

    Returns:
    --------
    results: dict
        Statistics of the run, see multiscale_clean_arrays.
    clean_image: np.ndarray
        (nx, ny) deconvolved image.
    """
    results, model_array, residual_maps = multiscale_clean_arrays(
        dirty_maps,
        psfs,
        basis_functions,
        scale_bias,
        deconv_params=deconv_params,
        progress_callback=progress_callback,
    )
    logger.info("Adding residuals...")
    return results, add_residuals(model_array, residual_maps)
