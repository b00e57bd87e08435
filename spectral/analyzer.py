"""Spectral feature extraction for one window of single-channel EEG.

The window is high-pass conditioned, Hamming-tapered, zero-padded to a power
of two and transformed with a real FFT. From the one-sided spectrum we derive
the power spectral density and, per canonical band, the total power, the
power centroid frequency and the circular-mean phase of the band's bins.
"""
import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from spectral.bands import Band, empty_phases, zero_powers
from spectral.circular_stats import circular_mean
from spectral.conditioning import high_pass_filter
from spectral.windowing import apply_window, pad_to_pow2


@dataclass
class BandPowerReport:
    power: dict[Band, float] = field(default_factory=zero_powers)
    centroid: dict[Band, float] = field(default_factory=zero_powers)
    frequency_weighted_bandpower: float = 0.0


@dataclass
class BandPhaseReport:
    phase: dict[Band, Optional[float]] = field(default_factory=empty_phases)


@dataclass
class SpectralFeatures:
    band_power: BandPowerReport
    band_phase: BandPhaseReport
    fft_size: int = 0

    @property
    def is_empty(self) -> bool:
        return self.fft_size == 0


def compute_psd(spectrum: np.ndarray, fft_size: int, sample_rate: float) -> np.ndarray:
    """One-sided PSD: 2/(N*fs) * |X[k]|^2 for k = 0..N/2."""
    norm = 2.0 / (fft_size * sample_rate)
    return norm * (spectrum.real ** 2 + spectrum.imag ** 2)


def _band_bins(band: Band, bin_hz: float, n_bins: int) -> np.ndarray:
    i_low = max(math.floor(band.low / bin_hz), 0)
    i_high = min(math.floor(band.high / bin_hz), n_bins - 1)
    if i_high < i_low:
        return np.arange(0)
    return np.arange(i_low, i_high + 1)


def band_power(psd: np.ndarray, band: Band, sample_rate: float, fft_size: int) -> float:
    """Sum of PSD over the band's bins; NaN bins are skipped."""
    bins = _band_bins(band, sample_rate / fft_size, psd.size)
    return float(np.nansum(psd[bins])) if bins.size else 0.0


def band_centroid(psd: np.ndarray, band: Band, sample_rate: float, fft_size: int) -> float:
    """Power-weighted mean frequency of the band; 0 when the band holds no power."""
    bin_hz = sample_rate / fft_size
    bins = _band_bins(band, bin_hz, psd.size)
    if not bins.size:
        return 0.0
    values = psd[bins]
    finite = np.isfinite(values)
    total = float(np.sum(values[finite]))
    if total <= 0:
        return 0.0
    freqs = bins[finite] * bin_hz
    return float(np.sum(freqs * values[finite]) / total)


def band_phase(spectrum: np.ndarray, band: Band, sample_rate: float, fft_size: int) -> Optional[float]:
    """Circular-mean phase (degrees) of the non-zero bins whose centre lies in the band."""
    freqs = np.arange(spectrum.size) * (sample_rate / fft_size)
    mask = (freqs >= band.low) & (freqs <= band.high) & (spectrum != 0)
    return circular_mean(np.angle(spectrum[mask]).tolist())


def frequency_weighted_bandpower(centroids: dict[Band, float]) -> float:
    total_bandwidth = sum(band.bandwidth for band in Band)
    if total_bandwidth <= 0:
        return 0.0
    return sum(centroids[band] * band.bandwidth for band in Band) / total_bandwidth


def analyze(samples: Sequence[float], sample_rate: float) -> SpectralFeatures:
    """Band power / phase features of an already conditioned window.

    An empty window is the defined "no data" result: all powers zero, all
    phases ``None``.
    """
    data = np.asarray(samples, dtype=float)
    if data.size == 0:
        return SpectralFeatures(BandPowerReport(), BandPhaseReport(), fft_size=0)

    padded = pad_to_pow2(apply_window(data))
    fft_size = padded.size
    spectrum = np.fft.rfft(padded)
    psd = compute_psd(spectrum, fft_size, sample_rate)

    power = {band: band_power(psd, band, sample_rate, fft_size) for band in Band}
    centroid = {band: band_centroid(psd, band, sample_rate, fft_size) for band in Band}
    phase = {band: band_phase(spectrum, band, sample_rate, fft_size) for band in Band}

    return SpectralFeatures(
        band_power=BandPowerReport(
            power=power,
            centroid=centroid,
            frequency_weighted_bandpower=frequency_weighted_bandpower(centroid),
        ),
        band_phase=BandPhaseReport(phase=phase),
        fft_size=fft_size,
    )


class SpectralAnalyzer:
    """Conditions a raw window and extracts its spectral features."""

    def __init__(self, highpass_cutoff_hz: float = 0.5):
        if highpass_cutoff_hz <= 0:
            raise ValueError("highpass_cutoff_hz must be positive")
        self.highpass_cutoff_hz = highpass_cutoff_hz

    def process(self, samples: Sequence[float], sample_rate: float) -> SpectralFeatures:
        filtered = high_pass_filter(samples, self.highpass_cutoff_hz, sample_rate)
        return analyze(filtered, sample_rate)
