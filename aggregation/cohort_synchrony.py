import logging
from itertools import combinations
from typing import Iterable

import numpy as np

from aggregation.epoch_aggregator import EpochSnapshot
from protocol.types import InterferenceBalance, PairwisePLV, SynchronyResult
from spectral.bands import Band

logger = logging.getLogger("aggregation")

# PLV at or below this is constructive, above it destructive
NEUTRAL_PLV_DEG = 90.0


def compute_plv(phase_a: float, phase_b: float) -> float:
    """Angular distance between two phases in degrees, always in [0, 180]."""
    d = abs(phase_a - phase_b) % 360.0
    return min(d, 360.0 - d)


def classify(plv: float) -> tuple[bool, float]:
    """Return (is_constructive, adjusted) where adjusted is the distance from 90° mirrored into [0, 90]."""
    is_constructive = plv <= NEUTRAL_PLV_DEG
    adjusted = plv if is_constructive else 180.0 - plv
    return is_constructive, adjusted


class CohortSynchronyCalculator:
    """Pairwise and group phase locking for one cohort over one epoch."""

    def compute(self, cohort_id: int, snapshot: EpochSnapshot, member_ids: Iterable[int]) -> SynchronyResult:
        eligible = sorted(set(snapshot.eligible(member_ids)))
        result = SynchronyResult(
            cohort_id=cohort_id,
            epoch_start=snapshot.epoch_start,
            epoch_end=snapshot.epoch_end,
            member_balances={subject_id: InterferenceBalance() for subject_id in eligible},
        )

        plv_total = 0.0
        for subject_a, subject_b in combinations(eligible, 2):
            features_a = snapshot.subjects[subject_a]
            features_b = snapshot.subjects[subject_b]
            pair_plvs = []
            for channel in sorted(features_a.channels & features_b.channels):
                phases_a = features_a.channel_phase[channel]
                phases_b = features_b.channel_phase[channel]
                for band in Band:
                    phase_a = phases_a.get(band)
                    phase_b = phases_b.get(band)
                    if phase_a is None or phase_b is None:
                        continue
                    plv = compute_plv(phase_a, phase_b)
                    is_constructive, adjusted = classify(plv)
                    for subject_id in (subject_a, subject_b):
                        balance = result.member_balances[subject_id]
                        if is_constructive:
                            balance.constructive += adjusted
                        else:
                            balance.destructive += adjusted
                    if is_constructive:
                        result.constructive_sum += adjusted
                    else:
                        result.destructive_sum += adjusted
                    pair_plvs.append(plv)

            if pair_plvs:
                result.pairwise.append(
                    PairwisePLV(subject_a, subject_b, float(np.mean(pair_plvs)), len(pair_plvs))
                )
                plv_total += sum(pair_plvs)
                result.pair_count += len(pair_plvs)

        result.group_plv = plv_total / result.pair_count if result.pair_count else 0.0

        if eligible:
            members = [snapshot.subjects[s] for s in eligible]
            result.group_band_power = {
                band: float(np.mean([m.power[band] for m in members])) for band in Band
            }
            result.group_frequency_weighted_bandpower = float(
                np.mean([m.frequency_weighted_bandpower for m in members])
            )

        logger.debug(
            "Cohort %d epoch %d: %d eligible, %d comparisons, group PLV %.2f",
            cohort_id, snapshot.epoch_start, len(eligible), result.pair_count, result.group_plv,
        )
        return result
