# Process-wide queue of pipeline metrics waiting for the collector
import asyncio
import threading
from typing import List
from metrics.metric import Metric


class MainIngest:
    _instance = None
    pipeline_metrics_queue: List[Metric]
    lock: threading.Lock = threading.Lock()
    max_pending: int = 10_000

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(MainIngest, cls).__new__(cls)
            cls._instance.pipeline_metrics_queue = []
        return cls._instance

    def add_pipeline_metric(self, metric: Metric) -> None:
        with self.lock:
            self.pipeline_metrics_queue.append(metric)
            # no collector attached: keep only the newest entries
            if len(self.pipeline_metrics_queue) > self.max_pending:
                del self.pipeline_metrics_queue[0]

    async def process_and_next_metric(self) -> Metric:
        while True:
            with self.lock:
                if len(self.pipeline_metrics_queue) > 0:
                    return self.pipeline_metrics_queue.pop(0)
            await asyncio.sleep(0.01)

    def has_next_metric_to_process(self) -> bool:
        return len(self.pipeline_metrics_queue) > 0

    def clear(self) -> None:
        with self.lock:
            self.pipeline_metrics_queue.clear()
