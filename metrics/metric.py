from datetime import datetime


class Metric:
    """One line of per-message pipeline telemetry."""
    ts: datetime | None = None
    subject_id: int | None = None
    channel: str | None = None
    total: int = 0
    windows: int = 0
    persisted: int = 0
    failed: int = 0
    buf: int | None = None
    lat: float | None = None
    drop: int = 0
    anomaly: bool = False

    def to_string(self) -> str:
        delim = " | "
        metrics = []

        if self.ts is not None:
            ts_str = self.ts.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + "Z"
            metrics.append(f"ts={ts_str}")

        if self.subject_id is not None:
            metrics.append(f"subject={self.subject_id}")

        if self.channel is not None:
            metrics.append(f"channel={self.channel}")

        metrics.append(f"total={self.total}")
        metrics.append(f"windows={self.windows}")
        metrics.append(f"persisted={self.persisted}")
        metrics.append(f"failed={self.failed}")

        if self.buf is not None:
            metrics.append(f"buf={self.buf}")

        if self.lat is not None:
            metrics.append(f"lat={self.lat:.2f}")

        metrics.append(f"drop={self.drop}")
        metrics.append(f"anomaly={self.anomaly}")

        return delim.join(metrics)
