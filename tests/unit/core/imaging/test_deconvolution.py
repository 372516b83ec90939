"""
Unit tests for astroclean.core.imaging.deconvolution module

Tests parameter validation, the peak selection helpers and the multiscale
CLEAN loop with its stop conditions.
"""

import pytest
import numpy as np

from astroclean.core.imaging.deconvolution import (
    _validate_deconv_params,
    progress_callback,
    identify_max_scale,
    identify_max_position,
    rescale_dirty_maps,
    add_residuals,
    multiscale_clean,
    multiscale_clean_arrays,
    Point,
    MINOR_ITER_LIMIT,
    MINOR_THRESHOLD,
    MINOR_CONVERGED,
    MINOR_DEGENERATE,
)
from astroclean.core.imaging.convolution import convolve
from astroclean.core.imaging.scale_space import (
    gaussian_grid,
    make_scale_stacks,
)


def _stacks(amplitudes, n_scales, image_size):
    frequencies = [float(i) for i in range(len(amplitudes))]
    return make_scale_stacks(amplitudes, frequencies, n_scales, image_size)


class _Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, iter_num, scale, px, py, peak):
        self.calls.append((iter_num, scale, px, py, peak))


class TestValidateDeconvParams:
    """Test the _validate_deconv_params function"""

    def test_default_parameters(self):
        result = _validate_deconv_params({})
        assert result == {
            "gain": 0.1,
            "niter": 50,
            "threshold": 1e-5,
            "residual_threshold": 1e-5,
            "n_workers": 1,
            "convolution_method": "direct",
        }

    def test_none_gives_defaults(self):
        assert _validate_deconv_params(None)["niter"] == 50

    def test_partial_parameters(self):
        result = _validate_deconv_params({"gain": 0.05, "niter": 10})
        assert result["gain"] == 0.05
        assert result["niter"] == 10
        assert result["threshold"] == 1e-5

    @pytest.mark.parametrize("gain", [0.0, -0.1, 1.1])
    def test_invalid_gain(self, gain):
        with pytest.raises(ValueError, match="CLEAN gain must be between 0 and 1"):
            _validate_deconv_params({"gain": gain})

    @pytest.mark.parametrize("niter", [0, -1, 1.5, "100", None, True])
    def test_invalid_niter(self, niter):
        with pytest.raises(ValueError, match="'niter' must be a positive integer"):
            _validate_deconv_params({"niter": niter})

    def test_invalid_n_workers(self):
        with pytest.raises(ValueError, match="'n_workers' must be a positive integer"):
            _validate_deconv_params({"n_workers": 0})

    @pytest.mark.parametrize("key", ["threshold", "residual_threshold"])
    def test_invalid_thresholds(self, key):
        with pytest.raises(ValueError, match="must be non-negative"):
            _validate_deconv_params({key: -1e-6})

    def test_invalid_convolution_method(self):
        with pytest.raises(ValueError, match="Convolution method"):
            _validate_deconv_params({"convolution_method": "wavelet"})


class TestPeakSelection:
    def test_max_scale_first_occurrence(self):
        stack = np.zeros((3, 4, 4))
        stack[1, 2, 2] = 5.0
        stack[2, 0, 0] = 5.0
        assert identify_max_scale(stack) == 1

    def test_max_position_first_occurrence(self):
        image = np.zeros((4, 4))
        image[1, 3] = 2.0
        image[2, 0] = 2.0
        pos, value = identify_max_position(image)
        assert pos == Point(1, 3)
        assert value == 2.0

    def test_max_position_negative_image(self):
        image = -np.ones((3, 3))
        image[2, 1] = -0.5
        pos, value = identify_max_position(image)
        assert pos == Point(2, 1)
        assert value == -0.5

    def test_rescale_does_not_mutate(self):
        stack = np.ones((2, 3, 3))
        rescaled = rescale_dirty_maps(stack, [1.0, 0.5])
        assert np.all(stack == 1.0)
        assert np.all(rescaled[1] == 0.5)

    def test_scale_bias_changes_selection(self):
        stack = np.zeros((2, 3, 3))
        stack[0, 1, 1] = 1.0
        stack[1, 1, 1] = 1.2
        assert identify_max_scale(rescale_dirty_maps(stack, [1.0, 1.0])) == 1
        assert identify_max_scale(rescale_dirty_maps(stack, [1.0, 0.5])) == 0

    def test_add_residuals_sums_every_scale(self):
        model = np.ones((2, 2))
        residuals = np.stack([np.full((2, 2), 0.5), np.full((2, 2), 0.25)])
        np.testing.assert_allclose(add_residuals(model, residuals), 1.75)


class TestMultiscaleClean:
    def test_single_sample_selects_center(self):
        dirty, psfs, basis, bias = _stacks([1.0], 1, 8)
        np.testing.assert_allclose(dirty[0], gaussian_grid(8, 1.0))

        recorder = _Recorder()
        results, model, residuals = multiscale_clean_arrays(
            dirty, psfs, basis, bias, {"niter": 1}, progress_callback=recorder
        )

        assert results["iter_done"] == 1
        assert results["stop_code"] == MINOR_ITER_LIMIT
        assert results["peaks"][0]["position"] == (4, 4)
        assert results["peaks"][0]["scale"] == 0
        assert results["peaks"][0]["intensity"] == pytest.approx(1.0)
        assert np.unravel_index(np.argmax(model), model.shape) == (4, 4)
        assert recorder.calls == [(0, 0, 4, 4, pytest.approx(1.0))]

    def test_all_zero_input(self):
        dirty, psfs, basis, bias = _stacks([0.0, 0.0, 0.0], 3, 8)
        results, clean_image = multiscale_clean(dirty, psfs, basis, bias)

        assert results["stop_code"] == MINOR_THRESHOLD
        assert results["iter_done"] == 0
        assert results["peaks"] == []
        assert clean_image.shape == (8, 8)
        assert not clean_image.any()

    def test_peak_decays_monotonically(self):
        dirty, psfs, basis, bias = _stacks([1.0], 1, 15)
        results, _, _ = multiscale_clean_arrays(
            dirty, psfs, basis, bias, {"niter": 20}, progress_callback=None
        )

        intensities = [peak["intensity"] for peak in results["peaks"]]
        assert len(intensities) == 20
        for previous, current in zip(intensities[:-1], intensities[1:]):
            assert abs(current) <= abs(previous) + 1e-12
        # The residual peak loses one gain fraction per iteration.
        assert intensities[1] == pytest.approx(0.9 * intensities[0])
        assert all(peak["position"] == (7, 7) for peak in results["peaks"])

    def test_residual_converged(self):
        dirty, psfs, basis, bias = _stacks([2.5], 1, 1)
        results, model, residuals = multiscale_clean_arrays(
            dirty, psfs, basis, bias, {"gain": 1.0}
        )

        assert results["stop_code"] == MINOR_CONVERGED
        assert results["iter_done"] == 0
        assert len(results["peaks"]) == results["iter_done"] + 1
        assert model[0, 0] == pytest.approx(2.5)
        assert abs(residuals[0, 0, 0]) <= 1e-12

    def test_degenerate_cross_convolution(self):
        dirty, psfs, basis, bias = _stacks([1.0, 2.0], 2, 8)
        psfs = np.zeros_like(psfs)

        results, clean_image = multiscale_clean(dirty, psfs, basis, bias)

        assert results["stop_code"] == MINOR_DEGENERATE
        assert results["iter_done"] == 0
        assert np.all(np.isfinite(clean_image))
        np.testing.assert_allclose(clean_image, dirty.sum(axis=0))

    def test_non_finite_peak_stops_before_update(self):
        dirty, psfs, basis, bias = make_scale_stacks(
            [np.nan, 1.0], [1.0, 2.0], 2, 8
        )
        assert np.all(np.isfinite(dirty[1]))

        results, model, residuals = multiscale_clean_arrays(
            dirty, psfs, basis, bias, {"niter": 3}, progress_callback=None
        )

        assert results["stop_code"] == MINOR_DEGENERATE
        assert results["iter_done"] == 0
        assert results["peaks"] == []
        assert not model.any()
        assert np.array_equal(residuals[1], dirty[1])

    def test_update_of_every_scale(self):
        gain = 0.1
        dirty, psfs, basis, bias = _stacks([1.0, 0.5], 2, 9)
        results, model, residuals = multiscale_clean_arrays(
            dirty, psfs, basis, bias, {"niter": 1, "gain": gain}
        )

        assert results["peaks"][0]["scale"] == 0
        assert results["peaks"][0]["position"] == (4, 4)
        max_intensity = results["peaks"][0]["intensity"]
        assert max_intensity == pytest.approx(1.0)

        # 17x17 cross-convolutions centered at 8, peak at 4 of a 9x9 grid
        for s in range(2):
            cross = convolve(basis[0], psfs[s])
            expected = dirty[s] - gain * max_intensity / cross.max() * cross[4:13, 4:13]
            np.testing.assert_allclose(residuals[s], expected, atol=1e-12)
        assert not np.allclose(residuals[1], dirty[1])

        cross_auto = convolve(basis[0], psfs[0])
        assert model[4, 4] == pytest.approx(gain * max_intensity / cross_auto.max())
        np.testing.assert_allclose(
            model, gain * max_intensity / cross_auto.max() * basis[0], atol=1e-12
        )

    def test_input_dirty_maps_not_modified(self):
        dirty, psfs, basis, bias = _stacks([1.0, 0.5, 0.25], 3, 9)
        dirty_copy = dirty.copy()
        multiscale_clean(dirty, psfs, basis, bias, {"niter": 3})
        assert np.array_equal(dirty, dirty_copy)

    def test_deconv_params_not_modified(self):
        dirty, psfs, basis, bias = _stacks([1.0], 1, 7)
        params = {"niter": 2}
        multiscale_clean(dirty, psfs, basis, bias, params)
        assert params == {"niter": 2}

    def test_multiple_scales(self):
        dirty, psfs, basis, bias = _stacks([1.0, 1.0, 1.0], 3, 15)
        results, clean_image = multiscale_clean(
            dirty, psfs, basis, bias, {"niter": 5}
        )

        assert results["iter_done"] == 5
        assert len(results["peaks"]) == 5
        assert all(0 <= peak["scale"] < 3 for peak in results["peaks"])
        assert clean_image.shape == (15, 15)
        assert np.all(np.isfinite(clean_image))

    def test_repeat_runs_are_bit_identical(self):
        dirty, psfs, basis, bias = _stacks([1.0, 0.7, 0.3, 0.2], 2, 11)
        params = {"niter": 6, "n_workers": 3}
        _, first = multiscale_clean(dirty, psfs, basis, bias, params)
        _, second = multiscale_clean(dirty, psfs, basis, bias, params)
        assert np.array_equal(first, second)

    def test_worker_count_does_not_change_result(self):
        dirty, psfs, basis, bias = _stacks([1.0, 0.7, 0.3], 3, 9)
        _, serial = multiscale_clean(dirty, psfs, basis, bias, {"niter": 4})
        _, parallel = multiscale_clean(
            dirty, psfs, basis, bias, {"niter": 4, "n_workers": 4}
        )
        np.testing.assert_allclose(parallel, serial, atol=1e-12)

    def test_fft_convolution_method(self):
        dirty, psfs, basis, bias = _stacks([1.0, 0.5], 2, 9)
        _, direct = multiscale_clean(dirty, psfs, basis, bias, {"niter": 3})
        _, fft = multiscale_clean(
            dirty, psfs, basis, bias, {"niter": 3, "convolution_method": "fft"}
        )
        np.testing.assert_allclose(fft, direct, atol=1e-9)

    def test_callback_called_every_iteration(self):
        dirty, psfs, basis, bias = _stacks([1.0, 0.5], 2, 9)
        recorder = _Recorder()
        multiscale_clean(
            dirty, psfs, basis, bias, {"niter": 3}, progress_callback=recorder
        )
        assert [call[0] for call in recorder.calls] == [0, 1, 2]

    def test_default_progress_callback(self):
        progress_callback(0, 1, 2, 3, 0.5)
        progress_callback(5, 1, 2, 3, 0.5, niter_log=2)


class TestStackValidation:
    def test_mismatched_scales(self):
        dirty, psfs, basis, bias = _stacks([1.0], 2, 8)
        with pytest.raises(ValueError, match="same number of scales"):
            multiscale_clean(dirty, psfs[:1], basis, bias)

    def test_wrong_bias_length(self):
        dirty, psfs, basis, _ = _stacks([1.0], 2, 8)
        with pytest.raises(ValueError, match="one weight per scale"):
            multiscale_clean(dirty, psfs, basis, [1.0])

    def test_not_3d(self):
        dirty, psfs, basis, bias = _stacks([1.0], 1, 8)
        with pytest.raises(ValueError, match="3D numpy array"):
            multiscale_clean(dirty[0], psfs, basis, bias)
