from prometheus_client import Counter, Histogram

aggregation_pass_ms = Histogram(
    "aggregation_pass_ms",
    "Duration of one epoch aggregation job (ms)",
    ["job"],
    buckets=(1, 5, 10, 50, 100, 500, 1000, 5000, 30000),
)

cohorts_processed = Counter("aggregation_cohorts_processed_total", "Cohorts aggregated for an epoch")
cohorts_failed = Counter("aggregation_cohorts_failed_total", "Cohort aggregations that raised")
cohorts_skipped = Counter(
    "aggregation_cohorts_skipped_total", "Cohorts skipped for lack of checked-in members or data"
)

synchrony_results_written = Counter("synchrony_results_written_total", "Synchrony results persisted")
alignment_results_written = Counter("alignment_results_written_total", "Alignment results persisted")
alignment_failures = Counter("alignment_failures_total", "Per-subject alignment computations that raised")

aggregation_job_failures = Counter(
    "aggregation_job_failures_total", "Epoch jobs that timed out or raised", ["job"]
)

epochs_caught_up = Counter(
    "aggregation_epochs_caught_up_total", "Epoch passes started after their boundary had already passed"
)
