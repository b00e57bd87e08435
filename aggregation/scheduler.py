import asyncio
import logging
import time
from concurrent.futures import Executor
from typing import Callable, Optional

from aggregation.aggregation_metrics import (
    aggregation_job_failures,
    aggregation_pass_ms,
    alignment_failures,
    alignment_results_written,
    cohorts_failed,
    cohorts_processed,
    cohorts_skipped,
    epochs_caught_up,
    synchrony_results_written,
)
from aggregation.cohort_synchrony import CohortSynchronyCalculator
from aggregation.epoch import epoch_window, next_epoch_boundary
from aggregation.epoch_aggregator import EpochAggregator
from aggregation.reference_alignment import ReferenceAlignmentComparator
from protocol.types import AlignmentResult, SynchronyResult
from service_config import AggregationConfig
from storage.feature_store import FeatureStore

logger = logging.getLogger("aggregation")


class EpochAggregationJobs:
    """The two per-epoch jobs: cohort synchrony and reference alignment.

    Both only read feature records already in the store and append their
    results. A failing cohort or subject is logged and skipped; the rest of
    the pass continues.
    """

    def __init__(
        self,
        store: FeatureStore,
        config: Optional[AggregationConfig] = None,
        executor: Optional[Executor] = None,
    ):
        self.store = store
        self.config = config or AggregationConfig()
        self.executor = executor
        self.aggregator = EpochAggregator(store)
        self.synchrony = CohortSynchronyCalculator()
        self.alignment = ReferenceAlignmentComparator()
        # jobs whose executor thread has not returned yet
        self._in_flight: set[str] = set()

    # ---------------- synchrony ---------------- #
    def run_synchrony(self, epoch_start: int, epoch_end: int) -> list[SynchronyResult]:
        results = []
        for cohort_id in self.store.cohort_ids():
            try:
                result = self._synchrony_for_cohort(cohort_id, epoch_start, epoch_end)
            except Exception as e:
                cohorts_failed.inc()
                logger.error(f"Synchrony for cohort {cohort_id} failed: {e}")
                continue
            if result is not None:
                results.append(result)
        logger.info(f"Synchrony epoch {epoch_start}-{epoch_end}: {len(results)} cohort result(s) stored")
        return results

    def _synchrony_for_cohort(self, cohort_id: int, epoch_start: int, epoch_end: int) -> Optional[SynchronyResult]:
        cohort = self.store.cohort_snapshot(cohort_id)
        if len(cohort.checked_in_ids) < 2:
            cohorts_skipped.inc()
            logger.info(f"Cohort {cohort_id}: fewer than 2 members checked in, skipping")
            return None

        snapshot = self.aggregator.aggregate(epoch_start, epoch_end, cohort.checked_in_ids)
        result = self.synchrony.compute(cohort_id, snapshot, cohort.checked_in_ids)
        if result.pair_count == 0:
            cohorts_skipped.inc()
            logger.info(f"Cohort {cohort_id}: not enough data for epoch {epoch_start}-{epoch_end}")
            return None

        self.store.append_synchrony_result(result)
        synchrony_results_written.inc()
        cohorts_processed.inc()
        return result

    # ---------------- alignment ---------------- #
    def run_alignment(self, epoch_start: int, epoch_end: int) -> list[AlignmentResult]:
        subject_ids = self.store.alignment_subject_ids()
        if not subject_ids:
            return []

        readings = self.store.fetch_reference_readings(
            epoch_start - self.config.reference_lookback_ms, epoch_end
        )
        if not readings:
            logger.info(f"Alignment epoch {epoch_start}-{epoch_end}: no reference readings available")
            return []

        snapshot = self.aggregator.aggregate(epoch_start, epoch_end, subject_ids)
        results = []
        for subject_id in subject_ids:
            features = snapshot.subjects.get(subject_id)
            if features is None:
                continue
            try:
                result = self.alignment.compare_nearest(features, readings, epoch_start, epoch_end)
                if result is None:
                    continue
                self.store.append_alignment_result(result)
            except Exception as e:
                alignment_failures.inc()
                logger.error(f"Alignment for subject {subject_id} failed: {e}")
                continue
            alignment_results_written.inc()
            results.append(result)
        logger.info(f"Alignment epoch {epoch_start}-{epoch_end}: {len(results)} subject result(s) stored")
        return results

    # ---------------- pass ---------------- #
    async def run_epoch_aggregation(
        self, epoch_duration_ms: Optional[int] = None, now_ms: Optional[float] = None
    ) -> dict:
        """Run the enabled jobs concurrently for the most recently completed epoch."""
        duration = epoch_duration_ms or self.config.epoch_duration_ms
        now_ms = time.time() * 1000.0 if now_ms is None else now_ms
        epoch_start, epoch_end = epoch_window(now_ms, duration)

        jobs: dict[str, Callable[[int, int], list]] = {}
        if self.config.enable_synchrony:
            jobs["synchrony"] = self.run_synchrony
        if self.config.enable_alignment:
            jobs["alignment"] = self.run_alignment

        outcomes = await asyncio.gather(
            *(self._run_job(name, job, epoch_start, epoch_end) for name, job in jobs.items())
        )
        summary = {"epoch_start": epoch_start, "epoch_end": epoch_end}
        summary.update(zip(jobs, outcomes))
        return summary

    async def _run_job(self, name: str, job: Callable[[int, int], list], epoch_start: int, epoch_end: int) -> list:
        if name in self._in_flight:
            aggregation_job_failures.labels(name).inc()
            logger.warning(
                f"{name} job for epoch {epoch_start}-{epoch_end} skipped: previous run is still in progress"
            )
            return []

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self.executor, job, epoch_start, epoch_end)
        self._in_flight.add(name)
        future.add_done_callback(lambda f: self._job_finished(name, f))

        start = time.perf_counter()
        try:
            # the shield keeps the worker future pending until its thread returns
            return await asyncio.wait_for(asyncio.shield(future), timeout=self.config.job_timeout_s)
        except asyncio.TimeoutError:
            aggregation_job_failures.labels(name).inc()
            logger.warning(
                f"{name} job for epoch {epoch_start}-{epoch_end} timed out after {self.config.job_timeout_s}s; "
                f"its worker thread is still running and may still store results"
            )
            return []
        except Exception as e:
            aggregation_job_failures.labels(name).inc()
            logger.error(f"{name} job for epoch {epoch_start}-{epoch_end} failed: {e}")
            return []
        finally:
            aggregation_pass_ms.labels(name).observe((time.perf_counter() - start) * 1000)

    def _job_finished(self, name: str, future: asyncio.Future) -> None:
        self._in_flight.discard(name)
        if not future.cancelled() and future.exception() is not None:
            logger.debug(f"{name} job finished with error: {future.exception()}")


class EpochScheduler:
    """Fires one aggregation pass for every completed epoch.

    The last boundary handed to the jobs is remembered. When a pass overruns
    one or more epochs, the boundaries that closed meanwhile are run
    back to back, oldest first, before the scheduler sleeps again.
    """

    def __init__(self, jobs: EpochAggregationJobs, epoch_duration_ms: int, clock=time.time, sleep=asyncio.sleep):
        self.jobs = jobs
        self.epoch_duration_ms = epoch_duration_ms
        self._clock = clock
        self._sleep = sleep
        self._running = False
        self._last_boundary: Optional[float] = None

    async def run(self):
        self._running = True
        logger.info(f"Starting epoch scheduler ({self.epoch_duration_ms} ms epochs)")

        while self._running:
            try:
                current_ms = self._clock() * 1000.0
                if self._last_boundary is None:
                    boundary = next_epoch_boundary(current_ms, self.epoch_duration_ms)
                else:
                    boundary = self._last_boundary + self.epoch_duration_ms

                if boundary > current_ms:
                    await self._sleep((boundary - current_ms) / 1000.0)
                    if not self._running:
                        break
                else:
                    epochs_caught_up.inc()
                    logger.warning(
                        f"Epoch ending at {boundary:.0f} closed {current_ms - boundary:.0f} ms ago, catching up"
                    )

                self._last_boundary = boundary
                # the boundary itself is "now" so the pass covers the epoch that just closed
                await self.jobs.run_epoch_aggregation(self.epoch_duration_ms, now_ms=boundary)
            except asyncio.CancelledError:
                logger.info("Epoch scheduler cancelled")
                raise
            except Exception as e:
                logger.error(f"Error in epoch scheduler loop: {e}")
                await self._sleep(1)

    def stop(self):
        self._running = False
        logger.info("Stopping epoch scheduler")
