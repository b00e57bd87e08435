import asyncio
import logging
from pathlib import Path
from typing import Optional

from metrics.logger_file import MetricLoggerFile
from metrics.main_ingest import MainIngest
from metrics.metric_logger_output import MetricLoggerOutput
from metrics.metric_output import MetricOutput
from service_config import MetricsConfig


class MetricsCollector:
    """Drains the MainIngest queue into the configured outputs."""

    def __init__(self, config: Optional[MetricsConfig] = None):
        config = config or MetricsConfig()
        self.main_ingest = MainIngest()
        self.logger = logging.getLogger("service")
        self.outputs: list[MetricOutput] = []
        if config.log_to_console:
            self.outputs.append(MetricLoggerOutput())
        file_config = config.log_file_configuration
        if file_config:
            Path(file_config.log_file_name).parent.mkdir(parents=True, exist_ok=True)
            self.outputs.append(MetricLoggerFile(
                file_config.log_file_name,
                file_config.log_file_max_size,
                file_config.log_file_max_count,
            ))
        self._running = True

    def stop(self):
        """Stop the metrics collector"""
        self._running = False

    async def collect_metrics(self):
        while self._running:
            try:
                metric = await self.main_ingest.process_and_next_metric()
                for output in self.outputs:
                    output.output(metric)
            except asyncio.CancelledError:
                self.logger.info("Metrics collector cancelled")
                raise
            except Exception as e:
                self.logger.error(f"Error collecting metrics: {e}")
                await asyncio.sleep(1)
