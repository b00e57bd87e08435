import logging
from logging.handlers import RotatingFileHandler

from metrics.metric import Metric
from metrics.metric_output import MetricOutput


class MetricLoggerFile(MetricOutput):
    def __init__(self, log_file_name: str, log_file_max_size: int, log_file_max_count: int):
        if log_file_name is None or log_file_max_size is None or log_file_max_count is None:
            raise ValueError("log_file_name, log_file_max_size, and log_file_max_count must be provided")

        # unique name per instance so two files never share handlers
        self.logger = logging.getLogger(f'MetricLoggerFile_{id(self)}')
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False
        self.logger.handlers.clear()

        self.handler = RotatingFileHandler(log_file_name, maxBytes=log_file_max_size, backupCount=log_file_max_count)
        self.logger.addHandler(self.handler)

    def output(self, metric: Metric):
        self.logger.info(metric.to_string())

    def close(self) -> None:
        self.logger.removeHandler(self.handler)
        self.handler.close()
