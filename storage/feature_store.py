from abc import ABC, abstractmethod
from typing import Iterable

from protocol.types import (
    AlignmentResult,
    CohortSnapshot,
    FeatureRecord,
    ReferenceReading,
    SynchronyResult,
)


class FeatureStore(ABC):
    """Persistence contract used by the ingestion path and the epoch jobs.

    Writes are appends; implementations raise ``PersistenceFailure`` when a
    write is refused.
    """

    # ---------------- writes ---------------- #
    @abstractmethod
    def append_feature(self, record: FeatureRecord) -> None:
        pass

    @abstractmethod
    def append_reference_reading(self, reading: ReferenceReading) -> int:
        pass

    @abstractmethod
    def append_synchrony_result(self, result: SynchronyResult) -> None:
        pass

    @abstractmethod
    def append_alignment_result(self, result: AlignmentResult) -> None:
        pass

    # ---------------- reads ---------------- #
    @abstractmethod
    def fetch_features(self, subject_ids: Iterable[int], start_ms: float, end_ms: float) -> list[FeatureRecord]:
        """Feature records of the given subjects with start_ms <= timestamp < end_ms."""

    @abstractmethod
    def fetch_reference_readings(self, start_ms: float, end_ms: float) -> list[ReferenceReading]:
        pass

    @abstractmethod
    def cohort_ids(self) -> list[int]:
        pass

    @abstractmethod
    def cohort_snapshot(self, cohort_id: int) -> CohortSnapshot:
        pass

    @abstractmethod
    def alignment_subject_ids(self) -> list[int]:
        pass

    def close(self) -> None:
        pass
