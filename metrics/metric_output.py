from abc import ABC, abstractmethod
from metrics.metric import Metric


class MetricOutput(ABC):

    @abstractmethod
    def output(self, metric: Metric):
        pass
