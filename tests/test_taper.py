import numpy as np
import pytest

from eewave.processing.taper import (
    nan_runs,
    taper_window,
    smooth_gaps,
    smooth_gaps_inplace,
    zero_out,
    zero_out_inplace,
)


def _gapped(n=20, gap=(8, 10), dtype=np.float64):
    x = np.ones(n, dtype=dtype)
    x[gap[0]:gap[1]] = np.nan
    return x


class TestNanRuns:
    def test_runs(self):
        x = np.array([np.nan, 1, 1, np.nan, np.nan, 1, np.nan])
        starts, ends = nan_runs(x)
        np.testing.assert_array_equal(starts, [0, 3, 6])
        np.testing.assert_array_equal(ends, [1, 5, 7])

    def test_no_nan(self):
        starts, ends = nan_runs(np.ones(5))
        assert len(starts) == 0 and len(ends) == 0


class TestTaperWindow:
    def test_values(self):
        np.testing.assert_allclose(taper_window(3), [1.0, 0.75, 0.25])

    def test_dtype(self):
        assert taper_window(4, np.float32).dtype == np.float32


class TestSmoothGaps:
    def test_interior_gap(self):
        out = smooth_gaps(_gapped(), pad=3)
        np.testing.assert_array_equal(out[:5], np.ones(5))
        np.testing.assert_allclose(out[5:8], [1.0, 0.75, 0.25])
        np.testing.assert_array_equal(out[8:10], [0.0, 0.0])
        np.testing.assert_allclose(out[10:13], [0.25, 0.75, 1.0])
        np.testing.assert_array_equal(out[13:], np.ones(7))

    def test_symmetric_around_gap(self):
        out = smooth_gaps(_gapped(n=40, gap=(18, 22)), pad=6)
        np.testing.assert_allclose(out, out[::-1])

    def test_input_unmodified(self):
        x = _gapped()
        smooth_gaps(x, pad=3)
        assert np.isnan(x[8])
        assert x[7] == 1.0

    def test_values_next_to_gap(self):
        pad = 100
        out = smooth_gaps(_gapped(n=400, gap=(200, 210)), pad=pad)
        nearest = np.sin(np.pi / (2 * pad)) ** 2
        # innermost valid sample on each side keeps the window's smallest value
        np.testing.assert_allclose(out[199], nearest)
        np.testing.assert_allclose(out[210], nearest)
        # outermost tapered sample on each side is untouched
        assert out[100] == 1.0
        np.testing.assert_allclose(out[309], 1.0)
        assert out[99] == 1.0 and out[310] == 1.0

    def test_inplace_returns_same_buffer(self):
        x = _gapped()
        out = smooth_gaps_inplace(x, pad=3)
        assert out is x
        assert x[8] == 0.0
        np.testing.assert_allclose(x[7], 0.25)

    def test_idempotent(self):
        once = smooth_gaps(_gapped(), pad=3)
        twice = smooth_gaps(once, pad=3)
        np.testing.assert_array_equal(once, twice)

    def test_no_gaps_is_noop(self):
        x = np.linspace(-1, 1, 10)
        np.testing.assert_array_equal(smooth_gaps(x, pad=3), x)

    def test_too_few_samples_before_gap_zeroed(self):
        out = smooth_gaps(_gapped(gap=(2, 3)), pad=3)
        np.testing.assert_array_equal(out[:3], [0.0, 0.0, 0.0])
        np.testing.assert_allclose(out[3:6], [0.25, 0.75, 1.0])

    def test_too_few_samples_after_gap_zeroed(self):
        out = smooth_gaps(_gapped(gap=(17, 18)), pad=3)
        np.testing.assert_allclose(out[14:17], [1.0, 0.75, 0.25])
        np.testing.assert_array_equal(out[17:], [0.0, 0.0, 0.0])

    def test_gap_at_start(self):
        out = smooth_gaps(_gapped(gap=(0, 2)), pad=3)
        np.testing.assert_array_equal(out[:2], [0.0, 0.0])
        np.testing.assert_allclose(out[2:5], [0.25, 0.75, 1.0])

    def test_gap_at_end(self):
        out = smooth_gaps(_gapped(gap=(18, 20)), pad=3)
        np.testing.assert_allclose(out[15:18], [1.0, 0.75, 0.25])
        np.testing.assert_array_equal(out[18:], [0.0, 0.0])

    def test_all_nan(self):
        out = smooth_gaps(np.full(5, np.nan), pad=3)
        np.testing.assert_array_equal(out, np.zeros(5))

    def test_fractional_pad_rounds_up(self):
        np.testing.assert_array_equal(
            smooth_gaps(_gapped(), pad=2.2), smooth_gaps(_gapped(), pad=3)
        )

    def test_pad_minimum_two(self):
        np.testing.assert_array_equal(
            smooth_gaps(_gapped(), pad=1), smooth_gaps(_gapped(), pad=2)
        )

    def test_non_finite_pad(self):
        with pytest.raises(ValueError, match="finite"):
            smooth_gaps(_gapped(), pad=float("inf"))

    def test_float32_preserved(self):
        out = smooth_gaps(_gapped(dtype=np.float32), pad=3)
        assert out.dtype == np.float32

    def test_inplace_rejects_integer_buffer(self):
        with pytest.raises(TypeError, match="floating-point"):
            smooth_gaps_inplace(np.ones(5, dtype=np.int32))

    def test_default_pad(self):
        x = _gapped(n=400, gap=(200, 210))
        out = smooth_gaps(x)
        np.testing.assert_array_equal(out[:100], np.ones(100))
        assert out[100] == 1.0
        assert 0.0 < out[199] < 0.001


class TestZeroOut:
    def test_small_values_zeroed(self):
        x = np.array([1e-8, -1e-8, 1e-7, 0.5, -2.0])
        np.testing.assert_array_equal(zero_out(x), [0.0, 0.0, 1e-7, 0.5, -2.0])

    def test_custom_threshold(self):
        x = np.array([0.05, -0.2, 0.3])
        np.testing.assert_array_equal(zero_out(x, thresh=0.1), [0.0, -0.2, 0.3])

    def test_nan_untouched(self):
        out = zero_out(np.array([np.nan, 1e-9]))
        assert np.isnan(out[0])
        assert out[1] == 0.0

    def test_pure_and_inplace(self):
        x = np.array([1e-9, 1.0], dtype=np.float32)
        out = zero_out(x)
        assert x[0] != 0.0
        assert out is not x
        assert zero_out_inplace(x) is x
        assert x[0] == 0.0

    def test_integer_input_copied_to_float(self):
        out = zero_out(np.array([0, 1, 2]))
        assert np.issubdtype(out.dtype, np.floating)
