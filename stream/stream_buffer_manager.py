from __future__ import annotations

import itertools
import logging
import math
import threading
import time
from typing import Callable, Optional, Sequence

import numpy as np

from spectral.windowing import next_pow2
from stream.channel_buffer import BufferKey, ChannelBuffer, SpectralWindow
from stream.stream_metrics import (
    stream_active_buffers,
    stream_buffer_evictions,
    stream_buffer_resets,
)

logger = logging.getLogger("stream_pipeline")


class StreamBufferManager:
    """Owns one sample buffer per (subject, channel) and cuts sliding windows from it.

    The key -> buffer map is guarded by a single lock that is only held for
    lookup, append, window slicing and eviction. Spectral work on the emitted
    windows happens outside the lock.

    Buffers are created on the first message for a key and evicted once they
    have been idle for ``idle_timeout_s`` (``None`` keeps them for the process
    lifetime).
    """

    def __init__(
        self,
        window_duration_s: float = 1.0,
        overlap_duration_s: float = 0.25,
        idle_timeout_s: Optional[float] = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if window_duration_s <= 0:
            raise ValueError("window_duration_s must be positive")
        if overlap_duration_s <= 0:
            raise ValueError("overlap_duration_s must be positive")
        self.window_duration_s = window_duration_s
        self.overlap_duration_s = overlap_duration_s
        self.idle_timeout_s = idle_timeout_s
        self._clock = clock
        self._buffers: dict[BufferKey, ChannelBuffer] = {}
        self._lock = threading.Lock()

    # ---------------- sizing ---------------- #
    def window_length(self, sample_rate: float) -> int:
        return next_pow2(math.ceil(self.window_duration_s * sample_rate))

    def slide_length(self, sample_rate: float) -> int:
        # a zero slide would never drain the buffer
        return max(1, math.floor(self.overlap_duration_s * sample_rate))

    # ----------------  API  ------------------ #
    def append(
        self,
        subject_id: int,
        channel: str,
        samples: Sequence[float],
        sample_rate: float,
        client_timestamp_ms: float,
    ) -> int:
        """Append samples to the key's buffer and return the buffered length."""
        if len(samples) == 0:
            raise ValueError("samples must be non-empty")
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")

        key = (subject_id, channel)
        with self._lock:
            buf = self._buffers.get(key)
            if buf is None:
                buf = ChannelBuffer(subject_id=subject_id, channel=channel, sample_rate=sample_rate)
                self._buffers[key] = buf
                stream_active_buffers.set(len(self._buffers))
                logger.info("Initialized buffer for %s-%s at %s Hz", subject_id, channel, sample_rate)
            elif buf.sample_rate != sample_rate:
                logger.warning(
                    "Sample rate changed for %s-%s (%s -> %s Hz), resetting buffer (%d samples dropped)",
                    subject_id, channel, buf.sample_rate, sample_rate, len(buf),
                )
                buf.reset(sample_rate)
                stream_buffer_resets.inc()

            buf.samples.extend(float(s) for s in samples)
            buf.end_timestamp_ms = client_timestamp_ms + (len(samples) / sample_rate) * 1000.0
            buf.last_ingest_mono_s = self._clock()
            return len(buf)

    def drain_windows(self, key: BufferKey) -> list[SpectralWindow]:
        """Cut every full window currently available for ``key``, sliding after each one."""
        with self._lock:
            buf = self._buffers.get(key)
            if buf is None:
                return []
            return self._drain_locked(buf)

    def ingest(
        self,
        subject_id: int,
        channel: str,
        samples: Sequence[float],
        sample_rate: float,
        client_timestamp_ms: float,
    ) -> list[SpectralWindow]:
        """Append a message's samples and return the windows it completed, oldest first."""
        self.append(subject_id, channel, samples, sample_rate, client_timestamp_ms)
        self.evict_idle()
        return self.drain_windows((subject_id, channel))

    def evict_idle(self, now_mono_s: Optional[float] = None) -> list[BufferKey]:
        if self.idle_timeout_s is None:
            return []
        now = self._clock() if now_mono_s is None else now_mono_s
        with self._lock:
            stale = [
                key for key, buf in self._buffers.items()
                if now - buf.last_ingest_mono_s > self.idle_timeout_s
            ]
            for key in stale:
                del self._buffers[key]
            if stale:
                stream_buffer_evictions.inc(len(stale))
                stream_active_buffers.set(len(self._buffers))
        for subject_id, channel in stale:
            logger.info("Evicted idle buffer for %s-%s", subject_id, channel)
        return stale

    def buffered_length(self, subject_id: int, channel: str) -> int:
        with self._lock:
            buf = self._buffers.get((subject_id, channel))
            return len(buf) if buf is not None else 0

    def get_buffer(self, subject_id: int, channel: str) -> Optional[ChannelBuffer]:
        with self._lock:
            return self._buffers.get((subject_id, channel))

    def keys(self) -> list[BufferKey]:
        with self._lock:
            return list(self._buffers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffers)

    # ---------------- private ---------------- #
    def _drain_locked(self, buf: ChannelBuffer) -> list[SpectralWindow]:
        window_len = self.window_length(buf.sample_rate)
        slide_len = self.slide_length(buf.sample_rate)
        windows: list[SpectralWindow] = []
        while len(buf) >= window_len:
            start_ms = buf.estimated_start_ms()
            data = np.fromiter(itertools.islice(buf.samples, window_len), dtype=float, count=window_len)
            windows.append(
                SpectralWindow(
                    subject_id=buf.subject_id,
                    channel=buf.channel,
                    samples=data,
                    sample_rate=buf.sample_rate,
                    start_timestamp_ms=start_ms,
                    sequence=buf.windows_emitted,
                )
            )
            buf.windows_emitted += 1
            for _ in range(min(slide_len, len(buf))):
                buf.samples.popleft()
            logger.debug(
                "Window %d for %s-%s, buffer remaining: %d",
                buf.windows_emitted, buf.subject_id, buf.channel, len(buf),
            )
        return windows
