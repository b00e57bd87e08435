from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque

import numpy as np

BufferKey = tuple[int, str]   # (subject_id, channel)


@dataclass
class ChannelBuffer:
    subject_id: int
    channel: str
    sample_rate: float
    samples: Deque[float] = field(default_factory=deque)
    # Client-clock timestamp (ms) of the end of the newest buffered sample.
    end_timestamp_ms: float = 0.0
    last_ingest_mono_s: float = 0.0
    windows_emitted: int = 0

    def __len__(self) -> int:
        return len(self.samples)

    def reset(self, sample_rate: float) -> None:
        self.samples.clear()
        self.sample_rate = sample_rate

    def estimated_start_ms(self) -> float:
        """Start time of the oldest buffered sample, back-computed from the logical end."""
        return self.end_timestamp_ms - (len(self.samples) / self.sample_rate) * 1000.0


@dataclass
class SpectralWindow:
    subject_id: int
    channel: str
    samples: np.ndarray
    sample_rate: float
    start_timestamp_ms: float
    sequence: int = 0
