import pytest

from aggregation.epoch import epoch_containing, epoch_window, next_epoch_boundary


class TestEpochWindow:

    def test_boundary_is_most_recently_completed_epoch(self):
        assert epoch_window(30_000, 15_000) == (15_000, 30_000)

    def test_mid_epoch(self):
        assert epoch_window(31_000, 15_000) == (30_000, 45_000)

    def test_epochs_tile_time(self):
        windows = [epoch_window(now, 1000) for now in range(1, 5001, 250)]
        for (s1, e1), (s2, e2) in zip(windows, windows[1:]):
            assert s2 in (s1, e1)
            assert e1 - s1 == 1000

    def test_rejects_non_positive_duration(self):
        with pytest.raises(ValueError):
            epoch_window(1000, 0)

    def test_containing_and_next_boundary(self):
        assert epoch_containing(15_000, 15_000) == (15_000, 30_000)
        assert epoch_containing(14_999, 15_000) == (0, 15_000)
        assert next_epoch_boundary(15_000, 15_000) == 30_000
        assert next_epoch_boundary(29_999.5, 15_000) == 30_000
