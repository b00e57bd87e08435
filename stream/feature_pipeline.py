from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Optional

from metrics.main_ingest import MainIngest
from metrics.metric import Metric
from protocol.types import FeatureRecord, IngestionMessage
from service_config import StreamConfig
from spectral.analyzer import SpectralAnalyzer
from storage.feature_store import FeatureStore
from stream.channel_buffer import BufferKey, SpectralWindow
from stream.errors import IngestionError, PersistenceFailure
from stream.stream_buffer_manager import StreamBufferManager
from stream.stream_metrics import (
    feature_extraction_ms,
    feature_persist_failures,
    stream_total_ingested,
    stream_windows_processed,
)
from stream.validation_pipeline import validate_message

logger = logging.getLogger("stream_pipeline")


def error_ack(exc: Exception) -> dict:
    return {"status": "error", "reason": getattr(exc, "reason", "error"), "message": str(exc)}


class FeaturePipeline:
    """Turns ingestion messages into persisted per-window feature records.

    Every (subject, channel) key has its own ``asyncio.Lock``; it is held while
    that key's windows are cut, analysed and persisted, so one key's windows
    are always stored in generation order while other keys run concurrently.
    Spectral analysis and store writes run on a small thread pool.
    """

    def __init__(
        self,
        store: FeatureStore,
        config: Optional[StreamConfig] = None,
        *,
        buffer_manager: Optional[StreamBufferManager] = None,
        analyzer: Optional[SpectralAnalyzer] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.config = config or StreamConfig()
        self.store = store
        self.buffers = buffer_manager if buffer_manager is not None else StreamBufferManager(
            window_duration_s=self.config.window_duration_s,
            overlap_duration_s=self.config.overlap_duration_s,
            idle_timeout_s=self.config.idle_timeout_s,
        )
        self.analyzer = analyzer if analyzer is not None else SpectralAnalyzer(self.config.highpass_cutoff_hz)
        self._owns_executor = executor is None
        self.executor = executor if executor is not None else ThreadPoolExecutor(
            max_workers=self.config.worker_threads, thread_name_prefix="spectral"
        )
        self._key_locks: dict[BufferKey, asyncio.Lock] = {}
        self.main_ingest = MainIngest()
        self.total_messages_received = 0
        self.dropped_message_count = 0
        self.persist_failure_count = 0

    # Validates one raw message, buffers it and processes the windows it completes.
    async def handle_message(self, raw: Any, session_subject_id: Optional[int]) -> list[dict]:
        """Returns one acknowledgement per completed window.

        Raises ``IngestionError`` (nothing buffered) when the message is
        malformed or not owned by the session's subject.
        """
        started = time.perf_counter()
        self.total_messages_received += 1
        metric = Metric()
        metric.ts = datetime.now(timezone.utc)
        metric.total = self.total_messages_received

        try:
            message = validate_message(
                raw,
                session_subject_id,
                self.config.allowed_channels,
                self.config.quarantine_file,
            )
        except IngestionError:
            self.dropped_message_count += 1
            metric.subject_id = session_subject_id
            metric.drop = self.dropped_message_count
            metric.anomaly = True
            self.main_ingest.add_pipeline_metric(metric)
            raise

        acks = await self._ingest(message)

        metric.subject_id = message.subject_id
        metric.channel = message.channel
        metric.windows = len(acks)
        metric.persisted = sum(1 for ack in acks if ack["status"] == "success")
        metric.failed = len(acks) - metric.persisted
        metric.buf = self.buffers.buffered_length(message.subject_id, message.channel)
        metric.lat = (time.perf_counter() - started) * 1000.0
        metric.drop = self.dropped_message_count
        self.main_ingest.add_pipeline_metric(metric)
        return acks

    async def run_feature_window_flush(self) -> list[dict]:
        """Process any full windows still sitting in buffers and evict idle buffers."""
        self.buffers.evict_idle()
        self._prune_locks()

        acks: list[dict] = []
        for key in self.buffers.keys():
            async with self._lock_for(key):
                for window in self.buffers.drain_windows(key):
                    acks.append(await self._process_window(window))
        return acks

    def close(self) -> None:
        if self._owns_executor:
            self.executor.shutdown(wait=True)

    # ---------------- private ---------------- #
    def _prune_locks(self) -> None:
        # buffers may also have been evicted by ingest, not only by the flush
        live = set(self.buffers.keys())
        for key in [k for k in self._key_locks if k not in live]:
            if not self._key_locks[key].locked():
                del self._key_locks[key]

    def _lock_for(self, key: BufferKey) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = self._key_locks[key] = asyncio.Lock()
        return lock

    async def _ingest(self, message: IngestionMessage) -> list[dict]:
        key = (message.subject_id, message.channel)
        async with self._lock_for(key):
            windows = self.buffers.ingest(
                message.subject_id,
                message.channel,
                message.samples,
                message.sample_rate,
                message.client_timestamp,
            )
            stream_total_ingested.inc()
            return [await self._process_window(window) for window in windows]

    async def _process_window(self, window: SpectralWindow) -> dict:
        loop = asyncio.get_running_loop()
        record = await loop.run_in_executor(self.executor, self.extract_features, window)
        try:
            await loop.run_in_executor(self.executor, self.store.append_feature, record)
        except PersistenceFailure as exc:
            self.persist_failure_count += 1
            feature_persist_failures.inc()
            logger.error(
                "Failed to store features for %s-%s at %.0f: %s",
                record.subject_id, record.channel, record.window_start_time, exc,
            )
            return {
                "status": "error",
                "reason": "persistence",
                "message": f"Computed but failed to store data for {record.subject_id}-{record.channel}",
                **record.to_payload(),
            }
        return {
            "status": "success",
            "message": f"Processed and stored data for {record.subject_id}-{record.channel}",
            **record.to_payload(),
        }

    def extract_features(self, window: SpectralWindow) -> FeatureRecord:
        started = time.perf_counter()
        features = self.analyzer.process(window.samples, window.sample_rate)
        feature_extraction_ms.observe((time.perf_counter() - started) * 1000.0)
        stream_windows_processed.inc()
        logger.debug(
            "Window %d for %s-%s: fft=%d fwb=%.3f Hz",
            window.sequence, window.subject_id, window.channel,
            features.fft_size, features.band_power.frequency_weighted_bandpower,
        )
        return FeatureRecord(
            subject_id=window.subject_id,
            channel=window.channel,
            window_start_time=window.start_timestamp_ms,
            band_power=features.band_power.power,
            band_phase=features.band_phase.phase,
            frequency_weighted_bandpower=features.band_power.frequency_weighted_bandpower,
        )
