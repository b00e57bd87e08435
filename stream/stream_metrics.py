from prometheus_client import Counter, Gauge, Histogram

# Ingestion messages accepted into a channel buffer
stream_total_ingested = Counter(
    "stream_total_ingested", "Ingestion messages accepted into a channel buffer"
)

# Messages rejected before buffering (malformed, ownership, channel)
validation_failures = Counter(
    "validation_failures_total", "Ingestion messages rejected by validation", ["reason"]
)

# Spectral windows extracted and analysed
stream_windows_processed = Counter(
    "stream_windows_processed_total", "Spectral windows extracted and analysed"
)

# Feature records the store refused
feature_persist_failures = Counter(
    "feature_persist_failures_total", "Feature records that failed to persist"
)

# Buffers cleared because the declared sample rate changed
stream_buffer_resets = Counter(
    "stream_buffer_resets_total", "Channel buffers reset on sample-rate change"
)

# Buffers dropped by the idle-timeout policy
stream_buffer_evictions = Counter(
    "stream_buffer_evictions_total", "Idle channel buffers evicted"
)

# Live (subject, channel) buffers
stream_active_buffers = Gauge(
    "stream_active_buffers", "Channel buffers currently held in memory"
)

# Time to condition + analyse one window
feature_extraction_ms = Histogram(
    "feature_extraction_ms",
    "Spectral feature extraction latency per window (ms)",
    buckets=(0.5, 1, 2, 5, 10, 20, 50, 100, 200, 500),
)
