import math
from dataclasses import dataclass, field
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from spectral.bands import Band, empty_phases, zero_powers


# ─────────── Inbound wire messages ───────────

class IngestionMessage(BaseModel):
    """One batch of samples for one (subject, channel) stream."""
    subject_id: int = Field(validation_alias=AliasChoices("subjectId", "lifeId", "subject_id"))
    channel: str = Field(min_length=1, validation_alias=AliasChoices("channel", "channelIdentifier"))
    samples: list[float] = Field(min_length=1)
    sample_rate: float = Field(gt=0, validation_alias=AliasChoices("sampleRate", "sample_rate"))
    client_timestamp: float = Field(validation_alias=AliasChoices("clientTimestamp", "client_timestamp"))

    @field_validator("samples")
    @classmethod
    def _finite_samples(cls, samples: list[float]) -> list[float]:
        if not all(math.isfinite(s) for s in samples):
            raise ValueError("samples must be finite numbers")
        return samples


class ReferenceReadingIn(BaseModel):
    """External reference oscillation reading, either one phase or per-band phases (degrees)."""
    phase: Optional[float] = None
    phases: dict[str, Optional[float]] = Field(default_factory=dict)
    timestamp: Optional[float] = None      # epoch ms, defaults to receive time
    location: Optional[str] = None

    @field_validator("phases")
    @classmethod
    def _known_bands(cls, phases: dict[str, Optional[float]]) -> dict[str, Optional[float]]:
        for label in phases:
            Band.from_label(label)
            if phases[label] is not None and not math.isfinite(phases[label]):
                raise ValueError(f"phase for {label} must be a finite number")
        return phases

    @field_validator("phase", "timestamp")
    @classmethod
    def _finite(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and not math.isfinite(value):
            raise ValueError("must be a finite number")
        return value

    def band_phases(self) -> dict[Band, Optional[float]]:
        result = {band: self.phase for band in Band}
        for label, value in self.phases.items():
            result[Band.from_label(label)] = value
        return result


# ─────────── Records exchanged with storage ───────────

def _labelled(values: dict[Band, object]) -> dict[str, object]:
    return {band.label: values.get(band) for band in Band}


@dataclass
class FeatureRecord:
    subject_id: int
    channel: str
    window_start_time: float                  # epoch ms
    band_power: dict[Band, float] = field(default_factory=zero_powers)
    band_phase: dict[Band, Optional[float]] = field(default_factory=empty_phases)
    frequency_weighted_bandpower: float = 0.0

    def to_payload(self) -> dict:
        return {
            "subjectId": self.subject_id,
            "channel": self.channel,
            "windowStartTime": self.window_start_time,
            "bandPower": _labelled(self.band_power),
            "bandPhase": _labelled(self.band_phase),
            "frequencyWeightedBandpower": self.frequency_weighted_bandpower,
        }


@dataclass
class ReferenceReading:
    timestamp: float                          # epoch ms
    phases: dict[Band, Optional[float]] = field(default_factory=empty_phases)
    location: Optional[str] = None
    reading_id: Optional[int] = None

    def to_payload(self) -> dict:
        return {
            "readingId": self.reading_id,
            "timestamp": self.timestamp,
            "phases": _labelled(self.phases),
            "location": self.location,
        }


@dataclass
class CohortSnapshot:
    cohort_id: int
    member_ids: list[int] = field(default_factory=list)
    checked_in_ids: list[int] = field(default_factory=list)


@dataclass
class InterferenceBalance:
    constructive: float = 0.0
    destructive: float = 0.0

    @property
    def net(self) -> float:
        return self.constructive - self.destructive


@dataclass
class PairwisePLV:
    subject_a: int
    subject_b: int
    plv: float
    comparisons: int


@dataclass
class SynchronyResult:
    cohort_id: int
    epoch_start: float
    epoch_end: float
    group_plv: float = 0.0
    constructive_sum: float = 0.0
    destructive_sum: float = 0.0
    pair_count: int = 0
    pairwise: list[PairwisePLV] = field(default_factory=list)
    member_balances: dict[int, InterferenceBalance] = field(default_factory=dict)
    group_band_power: dict[Band, float] = field(default_factory=zero_powers)
    group_frequency_weighted_bandpower: float = 0.0

    @property
    def net_balance(self) -> float:
        return self.constructive_sum - self.destructive_sum

    def to_payload(self) -> dict:
        return {
            "cohortId": self.cohort_id,
            "epochStart": self.epoch_start,
            "epochEnd": self.epoch_end,
            "groupPhaseLockingValue": self.group_plv,
            "constructiveSum": self.constructive_sum,
            "destructiveSum": self.destructive_sum,
            "netBalance": self.net_balance,
            "pairCount": self.pair_count,
            "pairwise": [
                {"pair": [p.subject_a, p.subject_b], "plv": p.plv, "comparisons": p.comparisons}
                for p in self.pairwise
            ],
            "memberBalances": {
                str(subject_id): {
                    "constructive": balance.constructive,
                    "destructive": balance.destructive,
                    "net": balance.net,
                }
                for subject_id, balance in self.member_balances.items()
            },
            "groupBandPower": _labelled(self.group_band_power),
            "groupFrequencyWeightedBandpower": self.group_frequency_weighted_bandpower,
        }


@dataclass
class AlignmentResult:
    subject_id: int
    epoch_start: float
    epoch_end: float
    subject_phase: dict[Band, Optional[float]]
    reference: ReferenceReading
    strength: dict[Band, Optional[float]] = field(default_factory=empty_phases)
    constructive: float = 0.0
    destructive: float = 0.0

    @property
    def net_balance(self) -> float:
        return self.constructive - self.destructive

    def to_payload(self) -> dict:
        return {
            "subjectId": self.subject_id,
            "epochStart": self.epoch_start,
            "epochEnd": self.epoch_end,
            "subjectPhase": _labelled(self.subject_phase),
            "reference": self.reference.to_payload(),
            "interferenceStrength": _labelled(self.strength),
            "constructive": self.constructive,
            "destructive": self.destructive,
            "netBalance": self.net_balance,
        }
