import logging
from typing import Iterable, Optional

from aggregation.epoch_aggregator import SubjectEpochFeatures
from protocol.types import AlignmentResult, ReferenceReading
from spectral.bands import Band, empty_phases

logger = logging.getLogger("aggregation")


def nearest_reading(target_ms: float, readings: Iterable[ReferenceReading]) -> Optional[ReferenceReading]:
    """Reading closest in time to ``target_ms``; the first one wins a tie."""
    best = None
    best_distance = None
    for reading in readings:
        distance = abs(reading.timestamp - target_ms)
        if best_distance is None or distance < best_distance:
            best = reading
            best_distance = distance
    return best


def phase_difference(phase_a: float, phase_b: float) -> float:
    """Absolute phase difference in degrees folded into [0, 180]."""
    d = abs(phase_a - phase_b) % 360.0
    if d > 180.0:
        d = 360.0 - d
    return d


def is_constructive(difference: float) -> bool:
    return difference <= 90.0


def interference_strength(difference: float) -> float:
    """Distance of a folded phase difference from the neutral 90° point, scaled to [0, 1]."""
    if 0.0 <= difference <= 90.0:
        return (90.0 - difference) / 90.0
    if 90.0 < difference <= 180.0:
        return (difference - 90.0) / 90.0
    return 0.0


class ReferenceAlignmentComparator:
    """Compares a subject's representative phases with an external reference reading."""

    def compare(
        self,
        features: SubjectEpochFeatures,
        reading: ReferenceReading,
        epoch_start: float,
        epoch_end: float,
    ) -> Optional[AlignmentResult]:
        """Power-weighted constructive/destructive balance; ``None`` if no band is comparable."""
        strength = empty_phases()
        constructive = 0.0
        destructive = 0.0
        total_weight = 0.0

        for band in Band:
            subject_phase = features.phase.get(band)
            reference_phase = reading.phases.get(band)
            if subject_phase is None or reference_phase is None:
                continue
            power = features.power.get(band)
            weight = power if power else 1.0
            difference = phase_difference(subject_phase, reference_phase)
            band_strength = interference_strength(difference)
            strength[band] = band_strength
            if is_constructive(difference):
                constructive += weight * band_strength
            else:
                destructive += weight * band_strength
            total_weight += weight

        if total_weight == 0.0:
            logger.debug("Subject %d: no band comparable with reading %s", features.subject_id, reading.reading_id)
            return None

        return AlignmentResult(
            subject_id=features.subject_id,
            epoch_start=epoch_start,
            epoch_end=epoch_end,
            subject_phase=dict(features.phase),
            reference=reading,
            strength=strength,
            constructive=constructive / total_weight,
            destructive=destructive / total_weight,
        )

    def compare_nearest(
        self,
        features: SubjectEpochFeatures,
        readings: list[ReferenceReading],
        epoch_start: float,
        epoch_end: float,
    ) -> Optional[AlignmentResult]:
        reading = nearest_reading(features.latest_timestamp, readings)
        if reading is None:
            return None
        return self.compare(features, reading, epoch_start, epoch_end)
