import os

import numpy as np
import toolviper.utils.logger as logger


def normalize_image(image):
    """
    Map the image range [min, max] onto [0, 255].

    Parameters
    ----------
    image : numpy.ndarray
        2D image.

    Returns
    -------
    numpy.ndarray
        uint8 image. A flat image maps to zeros.
    """
    image = np.asarray(image, dtype=np.float64)
    min_val = image.min()
    max_val = image.max()

    scale = 255.0
    if max_val > min_val:
        scale = 255.0 / (max_val - min_val)

    normalized = np.clip((image - min_val) * scale, 0, 255)
    return normalized.astype(np.uint8)


def upsample_image(image, size):
    """Bilinear resampling of a 2D image to size x size."""
    from scipy.ndimage import zoom

    image = np.asarray(image, dtype=np.float64)
    zoom_factors = (size / image.shape[0], size / image.shape[1])
    upsampled = zoom(image, zoom_factors, order=1, grid_mode=True, mode="nearest")
    return upsampled[:size, :size]


def render_image(
    image, filename, colormap=None, high_res=False, high_res_size=1024
):
    """
    Write an image indexed [x, y] as a PNG file.

    Parameters
    ----------
    image : numpy.ndarray
        2D image indexed [x, y]; x is the horizontal axis of the PNG.
    filename : str
        Output file name. Missing directories are created.
    colormap : str, optional
        Name of a matplotlib colormap such as 'viridis'. Grayscale if None.
    high_res : bool
        Bilinearly upsample to high_res_size x high_res_size before writing.
    high_res_size : int
        Side of the upsampled image.
    """
    from matplotlib.image import imsave

    image = np.asarray(image, dtype=np.float64)
    if image.ndim != 2:
        raise ValueError("image must be a 2D array")

    output_dir = os.path.dirname(filename)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)

    if high_res:
        logger.info(f"Upsampling image to {high_res_size}x{high_res_size}")
        image = upsample_image(image, high_res_size)

    # PNG rows run along y.
    raster = normalize_image(image).T

    cmap = "gray" if colormap is None else colormap
    imsave(filename, raster, cmap=cmap, vmin=0, vmax=255, format="png")

    logger.info(f"Saved image to {filename}")
