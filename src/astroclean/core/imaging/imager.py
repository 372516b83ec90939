"""
End-to-end multiscale CLEAN of an ACB amplitude file.

Reads the file, builds the per-scale dirty maps, PSFs and basis functions,
and runs the multiscale CLEAN on them.
"""

import numpy as np
import xarray as xr
from typing import Dict, Optional

import toolviper.utils.logger as logger

from astroclean.io.acb import read_acb
from astroclean.core.imaging.scale_space import make_scale_stacks
from astroclean.core.imaging.deconvolution import multiscale_clean

OUTPUT_KINDS = ["numpy", "xarray"]


def _to_xarray(clean_image, data, results, num_scales):
    image_size = clean_image.shape
    attrs = {
        "source": data.source,
        "obs_code": data.obs_code,
        "time_range": data.time_range,
        "channels": data.channels,
        "bandwidth": data.bandwidth,
        "n_scales": num_scales,
        "n_amplitudes": len(data.amplitudes),
        "iter_done": results["iter_done"],
        "stop_code": results["stop_code"],
        "stop_description": results["stop_description"],
    }
    return xr.DataArray(
        clean_image,
        coords={"x": np.arange(image_size[0]), "y": np.arange(image_size[1])},
        dims=("x", "y"),
        name="SKY_DECONVOLVED",
        attrs=attrs,
    )


def clean_acb(
    filename: str,
    num_scales: int = 5,
    image_size: int = 256,
    deconv_params: Optional[Dict] = None,
    output: str = "numpy",
):
    """
    Deconvolve the amplitudes of an ACB file with multiscale CLEAN.

    Parameters
    ----------
    filename : str
        ACB file to read.
    num_scales : int
        Number of scales.
    image_size : int
        Side of the square output image in pixels.
    deconv_params : dict, optional
        Deconvolution parameters, see
        astroclean.core.imaging.deconvolution._validate_deconv_params.
        'n_workers' is also used to build the dirty maps.
    output : str
        'numpy' returns (results, image). 'xarray' returns an xarray.DataArray
        with dims ('x', 'y') and the run statistics in its attrs.

    Returns
    -------
    results, clean_image : dict, numpy.ndarray
        When output is 'numpy'.
    xarray.DataArray
        When output is 'xarray'.
    """
    if output not in OUTPUT_KINDS:
        raise ValueError(f"output must be one of {OUTPUT_KINDS}, got '{output}'")

    n_workers = 1
    if deconv_params is not None:
        n_workers = deconv_params.get("n_workers", 1)

    data = read_acb(filename)

    dirty_maps, psfs, basis_functions, scale_bias = make_scale_stacks(
        data.amplitudes,
        data.frequencies,
        num_scales,
        image_size,
        n_workers=n_workers,
    )

    results, clean_image = multiscale_clean(
        dirty_maps, psfs, basis_functions, scale_bias, deconv_params=deconv_params
    )
    logger.info(f"CLEAN stopped: {results['stop_description']}")

    if output == "xarray":
        return _to_xarray(clean_image, data, results, num_scales)
    return results, clean_image
