import math

import numpy as np
import pytest

from metrics.main_ingest import MainIngest
from protocol.types import FeatureRecord
from spectral.bands import Band
from storage.sqlite_store import SqliteFeatureStore


def sine(freq_hz: float, sample_rate: float, n: int, phase_deg: float = 0.0, amplitude: float = 1.0) -> np.ndarray:
    t = np.arange(n) / sample_rate
    return amplitude * np.sin(2 * math.pi * freq_hz * t + math.radians(phase_deg))


def feature_record(subject_id, ts, channel="AF7", phase=None, power=1.0, fwb=10.0) -> FeatureRecord:
    """Record with the same phase/power on every band (phase may be None)."""
    return FeatureRecord(
        subject_id=subject_id,
        channel=channel,
        window_start_time=ts,
        band_power={band: power for band in Band},
        band_phase={band: phase for band in Band},
        frequency_weighted_bandpower=fwb,
    )


@pytest.fixture
def store(tmp_path):
    s = SqliteFeatureStore(tmp_path / "features.db")
    yield s
    s.close()


@pytest.fixture(autouse=True)
def _clear_metric_queue():
    MainIngest().clear()
    yield
    MainIngest().clear()
