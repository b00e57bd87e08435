import pytest

from aggregation.epoch_aggregator import SubjectEpochFeatures
from aggregation.reference_alignment import (
    ReferenceAlignmentComparator,
    interference_strength,
    nearest_reading,
    phase_difference,
)
from protocol.types import ReferenceReading
from spectral.bands import Band, empty_phases, zero_powers


def _reading(ts, reading_id=None, **band_phases):
    phases = empty_phases()
    for label, value in band_phases.items():
        phases[Band.from_label(label)] = value
    return ReferenceReading(timestamp=ts, phases=phases, reading_id=reading_id)


def _features(phases: dict, powers: dict | None = None, latest=1000.0):
    phase = empty_phases()
    phase.update(phases)
    power = zero_powers()
    power.update(powers or {})
    return SubjectEpochFeatures(subject_id=1, phase=phase, power=power, latest_timestamp=latest, record_count=1)


class TestHelpers:

    def test_nearest_reading_first_wins_tie(self):
        readings = [_reading(900, 1), _reading(1100, 2), _reading(2000, 3)]
        assert nearest_reading(1000, readings).reading_id == 1
        assert nearest_reading(1900, readings).reading_id == 3
        assert nearest_reading(1000, []) is None

    @pytest.mark.parametrize("a,b,expected", [(0, 0, 0), (10, 350, 20), (0, 270, 90), (0, 180, 180)])
    def test_phase_difference(self, a, b, expected):
        assert phase_difference(a, b) == pytest.approx(expected)

    def test_interference_strength_shape(self):
        assert interference_strength(90) == 0.0
        assert interference_strength(0) == 1.0
        assert interference_strength(180) == 1.0
        below = [interference_strength(d) for d in range(0, 91, 5)]
        above = [interference_strength(d) for d in range(90, 181, 5)]
        assert below == sorted(below, reverse=True)
        assert above == sorted(above)
        assert interference_strength(200) == 0.0


class TestReferenceAlignmentComparator:

    def test_power_weighted_balance(self):
        features = _features({Band.ALPHA: 0.0, Band.BETA: 0.0}, {Band.ALPHA: 3.0, Band.BETA: 1.0})
        result = ReferenceAlignmentComparator().compare(features, _reading(1000, alpha=0.0, beta=180.0), 0, 15_000)
        assert result.constructive == pytest.approx(0.75)
        assert result.destructive == pytest.approx(0.25)
        assert result.net_balance == pytest.approx(0.5)
        assert result.strength[Band.ALPHA] == pytest.approx(1.0)
        assert result.strength[Band.GAMMA] is None

    def test_zero_power_defaults_to_unit_weight(self):
        features = _features({Band.ALPHA: 0.0, Band.BETA: 0.0})
        result = ReferenceAlignmentComparator().compare(features, _reading(1000, alpha=0.0, beta=180.0), 0, 15_000)
        assert result.constructive == pytest.approx(0.5)
        assert result.destructive == pytest.approx(0.5)

    def test_nothing_comparable(self):
        features = _features({Band.ALPHA: 0.0})
        assert ReferenceAlignmentComparator().compare(features, _reading(1000, beta=10.0), 0, 15_000) is None

    def test_compare_nearest_uses_latest_subject_timestamp(self):
        features = _features({Band.ALPHA: 0.0}, latest=5000.0)
        readings = [_reading(1000, 1, alpha=180.0), _reading(5200, 2, alpha=0.0)]
        result = ReferenceAlignmentComparator().compare_nearest(features, readings, 0, 15_000)
        assert result.reference.reading_id == 2
        assert result.net_balance == pytest.approx(1.0)
