import math
from typing import Sequence

import numpy as np


def high_pass_filter(samples: Sequence[float], cutoff_hz: float, sample_rate: float) -> np.ndarray:
    """Single-pole IIR high-pass; removes DC offset and slow drift.

    y[i] = a*y[i-1] + a*(x[i] - x[i-1]) with y[-1] = x[-1] = 0.
    """
    data = np.asarray(samples, dtype=float)
    if data.size == 0:
        return data

    rc = 1.0 / (2.0 * math.pi * cutoff_hz)
    dt = 1.0 / sample_rate
    alpha = rc / (rc + dt)

    out = np.empty_like(data)
    y = 0.0
    x_prev = 0.0
    for i, x in enumerate(data):
        y = alpha * y + alpha * (x - x_prev)
        out[i] = y
        x_prev = x
    return out
