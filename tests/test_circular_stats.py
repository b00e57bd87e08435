import math
import random

import pytest

from spectral.circular_stats import circular_mean, circular_mean_deg


class TestCircularMean:

    def test_empty_input_is_none(self):
        assert circular_mean([]) is None
        assert circular_mean_deg([]) is None
        assert circular_mean_deg([None, None]) is None

    def test_single_angle(self):
        assert circular_mean([math.pi / 2]) == pytest.approx(90.0)

    def test_wraparound_near_zero(self):
        """350° and 10° average to 0°, not 180°."""
        mean = circular_mean([math.radians(350), math.radians(10)])
        assert min(mean, 360 - mean) == pytest.approx(0.0, abs=1e-9)

    def test_result_range(self):
        rng = random.Random(7)
        for _ in range(200):
            angles = [rng.uniform(-20, 20) for _ in range(rng.randint(1, 8))]
            mean = circular_mean(angles)
            assert 0.0 <= mean < 360.0

    def test_invariant_under_full_turns_and_reordering(self):
        rng = random.Random(11)
        for _ in range(50):
            angles = [rng.uniform(0, 2 * math.pi) for _ in range(5)]
            base = circular_mean(angles)
            shifted = list(angles)
            shifted[rng.randrange(5)] += 2 * math.pi
            shuffled = list(angles)
            rng.shuffle(shuffled)
            for other in (circular_mean(shifted), circular_mean(shuffled)):
                diff = abs(base - other) % 360
                assert min(diff, 360 - diff) == pytest.approx(0.0, abs=1e-7)

    def test_degrees_helper_skips_missing(self):
        assert circular_mean_deg([90.0, None, 90.0]) == pytest.approx(90.0)
