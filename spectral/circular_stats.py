import math
from typing import Iterable, Optional


def circular_mean(angles_rad: Iterable[float]) -> Optional[float]:
    """Mean direction of a set of angles (radians), returned in degrees [0, 360).

    Returns ``None`` for an empty input: "no phase could be computed" is never
    reported as a literal 0° phase.
    """
    sum_sin = 0.0
    sum_cos = 0.0
    count = 0
    for angle in angles_rad:
        sum_sin += math.sin(angle)
        sum_cos += math.cos(angle)
        count += 1

    if count == 0:
        return None

    mean_deg = math.degrees(math.atan2(sum_sin, sum_cos))
    if mean_deg < 0:
        mean_deg += 360.0
    # -0.0 + 360 and float rounding can land exactly on 360
    if mean_deg >= 360.0:
        mean_deg -= 360.0
    return mean_deg


def circular_mean_deg(angles_deg: Iterable[Optional[float]]) -> Optional[float]:
    """Circular mean of angles given in degrees; ``None`` entries are skipped."""
    return circular_mean(math.radians(a) for a in angles_deg if a is not None)
