import numpy as np
import pytest

from spectral.conditioning import high_pass_filter
from spectral.windowing import apply_window, is_pow2, next_pow2, pad_to_pow2
from conftest import sine


class TestPadToPow2:

    @pytest.mark.parametrize("n", [1, 2, 3, 5, 200, 256, 257, 1000])
    def test_idempotent_and_power_of_two(self, n):
        data = np.random.default_rng(n).standard_normal(n)
        once = pad_to_pow2(data)
        twice = pad_to_pow2(once)
        assert is_pow2(once.size)
        assert once.size >= n
        np.testing.assert_array_equal(once, twice)
        np.testing.assert_array_equal(once[:n], data)
        assert not once[n:].any()

    def test_empty(self):
        assert pad_to_pow2([]).size == 1

    def test_next_pow2(self):
        assert next_pow2(0) == 1
        assert next_pow2(1) == 1
        assert next_pow2(256) == 256
        assert next_pow2(257) == 512


class TestApplyWindow:

    def test_window_attenuates_energy(self):
        rng = np.random.default_rng(3)
        for n in (16, 200, 256, 1024):
            data = rng.standard_normal(n)
            windowed = apply_window(data)
            assert np.sum(windowed ** 2) <= np.sum(data ** 2) + 1e-12

    def test_hamming_edges(self):
        windowed = apply_window(np.ones(64))
        assert windowed[0] == pytest.approx(0.08)
        assert windowed[-1] == pytest.approx(0.08)

    def test_empty(self):
        assert apply_window([]).size == 0


class TestHighPassFilter:

    def test_removes_dc_offset(self):
        data = np.full(512, 100.0)
        filtered = high_pass_filter(data, 0.5, 256)
        assert abs(filtered[-1]) < abs(filtered[0])
        assert abs(filtered[-1]) < 10.0

    def test_passes_alpha(self):
        data = sine(10, 256, 512)
        filtered = high_pass_filter(data, 0.5, 256)
        assert np.max(np.abs(filtered[256:])) == pytest.approx(1.0, abs=0.05)

    def test_empty(self):
        assert high_pass_filter([], 0.5, 256).size == 0
