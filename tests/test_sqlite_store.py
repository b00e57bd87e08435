import pytest

from protocol.types import ReferenceReading, SynchronyResult
from spectral.bands import Band
from stream.errors import PersistenceFailure
from conftest import feature_record


class TestSqliteFeatureStore:

    def test_features_half_open_range(self, store):
        for ts in (999.0, 1000.0, 1500.0, 2000.0):
            store.append_feature(feature_record(1, ts, phase=45.0))
        store.append_feature(feature_record(2, 1500.0, phase=45.0))
        records = store.fetch_features([1], 1000, 2000)
        assert [r.window_start_time for r in records] == [1000.0, 1500.0]
        assert records[0].band_phase[Band.ALPHA] == pytest.approx(45.0)

    def test_missing_phase_round_trips_as_none(self, store):
        store.append_feature(feature_record(1, 1000.0, phase=None, power=0.0))
        record = store.fetch_features([1], 0, 2000)[0]
        assert record.band_phase[Band.THETA] is None
        assert record.band_power[Band.THETA] == 0.0

    def test_reference_readings(self, store):
        phases = {band: None for band in Band}
        phases[Band.ALPHA] = 120.0
        reading_id = store.append_reference_reading(ReferenceReading(5000.0, phases, "Tomsk"))
        readings = store.fetch_reference_readings(0, 10_000)
        assert readings[0].reading_id == reading_id
        assert readings[0].phases[Band.ALPHA] == 120.0
        assert readings[0].phases[Band.BETA] is None
        assert readings[0].location == "Tomsk"

    def test_cohort_membership(self, store):
        store.set_cohort_member(3, 1, checked_in=True)
        store.set_cohort_member(3, 2, checked_in=False)
        store.set_cohort_member(3, 2, checked_in=True)
        store.set_cohort_member(3, 4)
        snapshot = store.cohort_snapshot(3)
        assert store.cohort_ids() == [3]
        assert snapshot.member_ids == [1, 2, 4]
        assert snapshot.checked_in_ids == [1, 2]

    def test_alignment_opt_in(self, store):
        store.set_alignment_enabled(1)
        store.set_alignment_enabled(2)
        store.set_alignment_enabled(2, False)
        assert store.alignment_subject_ids() == [1]

    def test_synchrony_results_are_appended(self, store):
        result = SynchronyResult(cohort_id=3, epoch_start=0, epoch_end=15000, group_plv=30.0,
                                 constructive_sum=30.0, pair_count=1)
        store.append_synchrony_result(result)
        store.append_synchrony_result(result)
        payloads = store.fetch_synchrony_results(3)
        assert len(payloads) == 2
        assert payloads[0]["netBalance"] == 30.0

    def test_write_errors_become_persistence_failures(self, store):
        store.conn.execute("DROP TABLE features")
        with pytest.raises(PersistenceFailure):
            store.append_feature(feature_record(1, 1000.0, phase=10.0))
