from metrics.metric_output import MetricOutput
from metrics.metric import Metric


class MetricLoggerOutput(MetricOutput):
    """Console output, one line per metric."""

    def output(self, metric: Metric):
        print(metric.to_string())
