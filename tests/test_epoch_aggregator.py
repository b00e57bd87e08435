import pytest

from aggregation.cohort_synchrony import CohortSynchronyCalculator
from aggregation.epoch_aggregator import EpochAggregator, reduce_records
from spectral.bands import Band
from conftest import feature_record


class TestReduceRecords:

    def test_phases_use_circular_mean(self):
        subjects = reduce_records([
            feature_record(1, 1000, phase=350.0),
            feature_record(1, 2000, phase=10.0),
        ])
        phase = subjects[1].channel_phase["AF7"][Band.ALPHA]
        assert min(phase, 360 - phase) == pytest.approx(0.0, abs=1e-9)

    def test_powers_use_arithmetic_mean(self):
        subjects = reduce_records([
            feature_record(1, 1000, phase=0.0, power=1.0, fwb=8.0),
            feature_record(1, 2000, phase=0.0, power=3.0, fwb=12.0),
        ])
        assert subjects[1].channel_power["AF7"][Band.BETA] == pytest.approx(2.0)
        assert subjects[1].frequency_weighted_bandpower == pytest.approx(10.0)
        assert subjects[1].latest_timestamp == 2000

    def test_channels_are_kept_apart_and_pooled_per_subject(self):
        subjects = reduce_records([
            feature_record(1, 1000, channel="AF7", phase=80.0),
            feature_record(1, 1000, channel="AF8", phase=100.0),
        ])
        features = subjects[1]
        assert features.channels == {"AF7", "AF8"}
        assert features.channel_phase["AF7"][Band.ALPHA] == pytest.approx(80.0)
        assert features.phase[Band.ALPHA] == pytest.approx(90.0)

    def test_missing_phases_stay_none(self):
        subjects = reduce_records([feature_record(1, 1000, phase=None)])
        assert all(v is None for v in subjects[1].phase.values())


class TestEpochAggregator:

    def test_only_records_inside_epoch(self, store):
        store.append_feature(feature_record(1, 14_999, phase=0.0))
        store.append_feature(feature_record(1, 15_000, phase=90.0))
        store.append_feature(feature_record(1, 30_000, phase=180.0))
        snapshot = EpochAggregator(store).aggregate(15_000, 30_000, [1])
        assert snapshot.subjects[1].record_count == 1
        assert snapshot.subjects[1].phase[Band.ALPHA] == pytest.approx(90.0)

    def test_cohort_with_one_active_subject(self, store):
        """Three members, one with data: the other two drop out and no pair is compared."""
        store.append_feature(feature_record(1, 16_000, phase=45.0))
        store.append_feature(feature_record(2, 1_000, phase=45.0))
        snapshot = EpochAggregator(store).aggregate(15_000, 30_000, [1, 2, 3])
        assert list(snapshot.subjects) == [1]
        assert snapshot.eligible([1, 2, 3]) == [1]

        result = CohortSynchronyCalculator().compute(9, snapshot, [1, 2, 3])
        assert result.pair_count == 0
        assert result.group_plv == 0.0
        assert result.pairwise == []
