from enum import Enum


class Band(Enum):
    """Canonical EEG frequency bands as (low_hz, high_hz), both inclusive."""
    DELTA = (0.5, 4.0)
    THETA = (4.0, 8.0)
    ALPHA = (8.0, 13.0)
    BETA = (13.0, 30.0)
    GAMMA = (30.0, 45.0)

    @property
    def low(self) -> float:
        return self.value[0]

    @property
    def high(self) -> float:
        return self.value[1]

    @property
    def bandwidth(self) -> float:
        return self.high - self.low

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> "Band":
        try:
            return cls[label.upper()]
        except KeyError:
            raise ValueError(f"Unknown band: {label}") from None


def zero_powers() -> dict[Band, float]:
    return {band: 0.0 for band in Band}


def empty_phases() -> dict[Band, float | None]:
    return {band: None for band in Band}
