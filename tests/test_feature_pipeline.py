import asyncio
import json

import pytest

from metrics.main_ingest import MainIngest
from service_config import StreamConfig
from spectral.bands import Band
from stream.errors import MalformedInput, OwnershipMismatch, PersistenceFailure
from stream.feature_pipeline import FeaturePipeline
from stream.stream_buffer_manager import StreamBufferManager
from conftest import sine


def _raw(samples, subject_id=1, channel="AF7", ts=1_000_000.0, rate=256):
    return json.dumps({
        "subjectId": subject_id,
        "channel": channel,
        "samples": [float(s) for s in samples],
        "sampleRate": rate,
        "clientTimestamp": ts,
    })


class FailingStore:
    """Store double whose feature writes always fail."""

    def __init__(self):
        self.attempts = 0

    def append_feature(self, record):
        self.attempts += 1
        raise PersistenceFailure("disk full")


@pytest.fixture
def pipeline(store):
    p = FeaturePipeline(store, StreamConfig(allowed_channels=["AF7", "AF8"], worker_threads=2))
    yield p
    p.close()


class TestFeaturePipeline:

    @pytest.mark.asyncio
    async def test_full_window_is_persisted_and_acknowledged(self, pipeline, store):
        acks = await pipeline.handle_message(_raw(sine(10, 256, 300)), 1)
        assert len(acks) == 1
        ack = acks[0]
        assert ack["status"] == "success"
        assert ack["subjectId"] == 1
        assert ack["channel"] == "AF7"
        assert set(ack["bandPower"]) == {band.label for band in Band}
        assert ack["bandPower"]["alpha"] == max(ack["bandPower"].values())

        records = store.fetch_features([1], 0, 10_000_000)
        assert len(records) == 1
        assert records[0].window_start_time == pytest.approx(ack["windowStartTime"])
        assert pipeline.buffers.buffered_length(1, "AF7") == 236

    @pytest.mark.asyncio
    async def test_partial_window_sends_no_ack(self, pipeline, store):
        assert await pipeline.handle_message(_raw(sine(10, 256, 100)), 1) == []
        assert store.fetch_features([1], 0, 10_000_000) == []

    @pytest.mark.asyncio
    async def test_rejected_message_leaves_buffers_untouched(self, pipeline):
        with pytest.raises(OwnershipMismatch):
            await pipeline.handle_message(_raw([1.0] * 10, subject_id=2), 1)
        with pytest.raises(MalformedInput):
            await pipeline.handle_message(_raw([1.0] * 10, channel="Cz"), 1)
        assert len(pipeline.buffers) == 0
        assert pipeline.dropped_message_count == 2

    @pytest.mark.asyncio
    async def test_persistence_failure_reports_computed_features(self):
        failing = FailingStore()
        pipeline = FeaturePipeline(failing, StreamConfig())
        try:
            acks = await pipeline.handle_message(_raw(sine(10, 256, 512)), 1)
        finally:
            pipeline.close()
        # later windows are still processed after the first failure
        assert len(acks) == 5
        assert failing.attempts == 5
        assert all(ack["status"] == "error" for ack in acks)
        assert all(ack["reason"] == "persistence" for ack in acks)
        assert "bandPower" in acks[0]
        assert pipeline.persist_failure_count == 5

    @pytest.mark.asyncio
    async def test_windows_of_one_key_are_stored_in_order(self, pipeline, store):
        messages = [_raw(sine(10, 256, 64), ts=1_000_000.0 + i * 250) for i in range(12)]
        await asyncio.gather(*(pipeline.handle_message(m, 1) for m in messages))
        starts = [r.window_start_time for r in store.fetch_features([1], 0, 10_000_000)]
        assert len(starts) == 9
        assert starts == sorted(starts)

    @pytest.mark.asyncio
    async def test_keys_processed_concurrently(self, pipeline, store):
        await asyncio.gather(
            pipeline.handle_message(_raw(sine(10, 256, 256), channel="AF7"), 1),
            pipeline.handle_message(_raw(sine(10, 256, 256), channel="AF8"), 1),
        )
        records = store.fetch_features([1], 0, 10_000_000)
        assert sorted(r.channel for r in records) == ["AF7", "AF8"]

    @pytest.mark.asyncio
    async def test_pipeline_metrics_are_queued(self, pipeline):
        await pipeline.handle_message(_raw(sine(10, 256, 256)), 1)
        metric = await MainIngest().process_and_next_metric()
        assert metric.subject_id == 1
        assert metric.windows == 1
        assert metric.persisted == 1

    @pytest.mark.asyncio
    async def test_flush_evicts_idle_buffers(self, store):
        now = [0.0]
        buffers = StreamBufferManager(idle_timeout_s=10, clock=lambda: now[0])
        pipeline = FeaturePipeline(store, StreamConfig(), buffer_manager=buffers)
        try:
            await pipeline.handle_message(_raw(sine(10, 256, 100)), 1)
            now[0] = 11.0
            assert await pipeline.run_feature_window_flush() == []
            assert len(pipeline.buffers) == 0
        finally:
            pipeline.close()

    def test_injected_components_are_kept(self, store):
        buffers = StreamBufferManager(idle_timeout_s=5)
        pipeline = FeaturePipeline(store, StreamConfig(), buffer_manager=buffers)
        try:
            assert pipeline.buffers is buffers
        finally:
            pipeline.close()

    @pytest.mark.asyncio
    async def test_locks_of_evicted_keys_are_released(self, store):
        now = [0.0]
        buffers = StreamBufferManager(idle_timeout_s=10, clock=lambda: now[0])
        pipeline = FeaturePipeline(store, StreamConfig(allowed_channels=[]), buffer_manager=buffers)
        try:
            for subject_id in range(1, 21):
                await pipeline.handle_message(_raw(sine(10, 256, 10), subject_id=subject_id), subject_id)
                now[0] += 11.0
            await pipeline.run_feature_window_flush()
            assert len(pipeline.buffers) == 0
            assert pipeline._key_locks == {}
        finally:
            pipeline.close()
