from typing import Sequence

import numpy as np


def is_pow2(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def next_pow2(n: int) -> int:
    """Smallest power of two >= n (1 for n <= 1)."""
    if n <= 1:
        return 1
    return 1 << (int(n) - 1).bit_length()


def apply_window(samples: Sequence[float]) -> np.ndarray:
    """Taper with a Hamming window, w[i] = 0.54 - 0.46*cos(2*pi*i/(N-1))."""
    data = np.asarray(samples, dtype=float)
    if data.size == 0:
        return data
    return data * np.hamming(data.size)


def pad_to_pow2(samples: Sequence[float]) -> np.ndarray:
    """Zero-pad to the next power-of-two length; no-op when already a power of two."""
    data = np.asarray(samples, dtype=float)
    if is_pow2(data.size):
        return data.copy()
    return np.concatenate([data, np.zeros(next_pow2(data.size) - data.size)])
