from .convolution import convolve
from .scale_space import (
    make_psfs,
    make_basis_functions,
    make_dirty_maps,
    make_scale_bias,
    make_scale_stacks,
)
from .deconvolution import multiscale_clean, multiscale_clean_arrays
