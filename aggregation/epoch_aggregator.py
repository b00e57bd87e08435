import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional

import numpy as np

from protocol.types import FeatureRecord
from spectral.bands import Band, empty_phases, zero_powers
from spectral.circular_stats import circular_mean_deg
from storage.feature_store import FeatureStore

logger = logging.getLogger("aggregation")


@dataclass
class SubjectEpochFeatures:
    """One subject's representative features for one epoch.

    Phases are circular means in degrees (``None`` when no window of the group
    had a phase); powers are arithmetic means.
    """
    subject_id: int
    channel_phase: dict[str, dict[Band, Optional[float]]] = field(default_factory=dict)
    channel_power: dict[str, dict[Band, float]] = field(default_factory=dict)
    phase: dict[Band, Optional[float]] = field(default_factory=empty_phases)
    power: dict[Band, float] = field(default_factory=zero_powers)
    frequency_weighted_bandpower: float = 0.0
    latest_timestamp: float = 0.0
    record_count: int = 0

    @property
    def channels(self) -> set[str]:
        return set(self.channel_phase)


@dataclass
class EpochSnapshot:
    epoch_start: float
    epoch_end: float
    subjects: dict[int, SubjectEpochFeatures] = field(default_factory=dict)

    def eligible(self, subject_ids: Iterable[int]) -> list[int]:
        return [s for s in subject_ids if s in self.subjects]


def _mean_powers(records: list[FeatureRecord]) -> dict[Band, float]:
    return {
        band: float(np.mean([r.band_power.get(band, 0.0) for r in records]))
        for band in Band
    }


def _mean_phases(records: list[FeatureRecord]) -> dict[Band, Optional[float]]:
    return {
        band: circular_mean_deg(r.band_phase.get(band) for r in records)
        for band in Band
    }


def reduce_records(records: Iterable[FeatureRecord]) -> dict[int, SubjectEpochFeatures]:
    """Group records by (subject, channel, band) and reduce each group."""
    by_subject: dict[int, dict[str, list[FeatureRecord]]] = defaultdict(lambda: defaultdict(list))
    for record in records:
        by_subject[record.subject_id][record.channel].append(record)

    subjects: dict[int, SubjectEpochFeatures] = {}
    for subject_id, by_channel in by_subject.items():
        pooled = [r for channel_records in by_channel.values() for r in channel_records]
        subjects[subject_id] = SubjectEpochFeatures(
            subject_id=subject_id,
            channel_phase={ch: _mean_phases(rs) for ch, rs in by_channel.items()},
            channel_power={ch: _mean_powers(rs) for ch, rs in by_channel.items()},
            phase=_mean_phases(pooled),
            power=_mean_powers(pooled),
            frequency_weighted_bandpower=float(np.mean([r.frequency_weighted_bandpower for r in pooled])),
            latest_timestamp=max(r.window_start_time for r in pooled),
            record_count=len(pooled),
        )
    return subjects


class EpochAggregator:
    """Reads one epoch's stored feature records and reduces them per subject."""

    def __init__(self, store: FeatureStore):
        self.store = store

    def aggregate(self, epoch_start: float, epoch_end: float, subject_ids: Iterable[int]) -> EpochSnapshot:
        subject_ids = list(subject_ids)
        records = self.store.fetch_features(subject_ids, epoch_start, epoch_end)
        # the store contract is half-open, but keep the boundary rule local too
        records = [r for r in records if epoch_start <= r.window_start_time < epoch_end]
        snapshot = EpochSnapshot(epoch_start, epoch_end, reduce_records(records))

        missing = [s for s in subject_ids if s not in snapshot.subjects]
        if missing:
            logger.debug(
                "Epoch %d-%d: no feature records for subjects %s",
                epoch_start, epoch_end, missing,
            )
        return snapshot
