"""
Frequency band sampling and smoothing.

Turns a spectral-magnitude query into three smoothed band levels
(bass, mid, treble) once per tick.
"""

import logging
import math
from dataclasses import replace
from enum import Enum
from typing import Callable, Optional

import librosa
import numpy as np
from scipy import signal as scipy_signal

from kaleidopulse.config import (
    BandRange,
    SmoothingConfig,
    SpectrumConfig,
    sanitize_smoothing,
    sanitize_spectrum,
)

logger = logging.getLogger(__name__)

# magnitude(freq_lo, freq_hi) -> float >= 0
MagnitudeSource = Callable[[float, float], float]


class Band(Enum):
    """Tracked frequency bands."""

    BASS = "bass"
    MID = "mid"
    TREBLE = "treble"


def _valid_magnitude(value) -> float:
    """Map absent or invalid magnitudes to 0."""
    if value is None:
        return 0.0
    value = float(value)
    if not math.isfinite(value) or value < 0.0:
        return 0.0
    return value


class SpectrumSampler:
    """
    Computes the average magnitude of each band from a magnitude source.

    Bands are walked bin by bin at ``sample_rate / transform_size``
    resolution and the per-bin magnitudes averaged.
    """

    def __init__(
        self,
        config: SpectrumConfig | None = None,
        source: Optional[MagnitudeSource] = None,
    ):
        self.config = sanitize_spectrum(config or SpectrumConfig())
        self.source = source

    @property
    def is_ready(self) -> bool:
        """True when a magnitude source is attached."""
        return self.source is not None

    def band_range(self, band: Band) -> BandRange:
        return getattr(self.config, band.value)

    def set_band_range(self, band: Band, min_freq: float, max_freq: float):
        """Change a band's frequency range (clamped to [0, nyquist])."""
        new_range = BandRange(min_freq, max_freq).clamped(self.config.nyquist)
        self.config = replace(self.config, **{band.value: new_range})
        logger.debug(
            "Band range updated: %s %.1f-%.1f Hz",
            band.value, new_range.min_freq, new_range.max_freq,
        )

    def band_magnitude(self, band: Band) -> float:
        """Average magnitude across the bins of a band."""
        if self.source is None:
            return 0.0

        band_range = self.band_range(band)
        bin_width = self.config.bin_width
        n_bins = max(1, int(math.ceil((band_range.max_freq - band_range.min_freq) / bin_width)))

        total = 0.0
        for i in range(n_bins):
            lo = band_range.min_freq + i * bin_width
            hi = min(lo + bin_width, band_range.max_freq)
            total += _valid_magnitude(self.source(lo, hi))
        return total / n_bins

    def sample(self) -> dict[Band, float]:
        """Raw (unsmoothed) magnitude for every band."""
        return {band: self.band_magnitude(band) for band in Band}


class BandSmoother:
    """
    Exponentially smooths band magnitudes after applying gain.

    ``smoothed = lerp(smoothed, raw * band_gain * overall_gain, factor)``
    """

    def __init__(self, config: SmoothingConfig | None = None):
        self.config = sanitize_smoothing(config or SmoothingConfig())
        self.levels: dict[Band, float] = {band: 0.0 for band in Band}

    def _lerp(self, current: float, target: float, factor: float) -> float:
        return current + (target - current) * factor

    def gain(self, band: Band) -> float:
        return getattr(self.config, f"{band.value}_gain")

    def set_gain(self, band: Band, gain: float):
        self.config = sanitize_smoothing(
            replace(self.config, **{f"{band.value}_gain": gain})
        )

    def set_overall_gain(self, gain: float):
        self.config = sanitize_smoothing(replace(self.config, overall_gain=gain))

    def set_smoothing_factor(self, factor: float):
        self.config = sanitize_smoothing(replace(self.config, smoothing_factor=factor))

    def update(self, raw: dict[Band, float]) -> dict[Band, float]:
        """Blend new raw magnitudes into the smoothed levels."""
        factor = self.config.smoothing_factor
        for band in Band:
            level = _valid_magnitude(raw.get(band, 0.0))
            level *= self.gain(band) * self.config.overall_gain
            # Convex blend of two non-negatives, so never negative
            self.levels[band] = max(0.0, self._lerp(self.levels[band], level, factor))
        return dict(self.levels)

    def reset(self):
        for band in Band:
            self.levels[band] = 0.0


class FFTSpectrum:
    """
    Magnitude source backed by a windowed FFT of the latest PCM block.

    Feed mono blocks with ``push`` and pass ``magnitude`` to a
    SpectrumSampler. Magnitudes are scaled so a full-scale sine reads
    close to 1.0 in its bin.
    """

    def __init__(
        self,
        sample_rate: int = 44100,
        transform_size: int = 2048,
        window: str = "hann",
    ):
        self.sample_rate = sample_rate
        self.transform_size = transform_size
        self.window = scipy_signal.get_window(window, transform_size).astype(np.float32)
        self._norm = 2.0 / float(np.sum(self.window))
        self.frequencies = librosa.fft_frequencies(sr=sample_rate, n_fft=transform_size)
        self.spectrum: np.ndarray | None = None

    def push(self, samples: np.ndarray) -> np.ndarray:
        """
        Compute the magnitude spectrum of a block of samples.

        Blocks shorter than the transform size are zero-padded, longer
        blocks use their most recent ``transform_size`` samples.
        Multi-channel input (n_samples, n_channels) is mixed to mono.
        """
        y = np.asarray(samples, dtype=np.float32)
        if y.ndim > 1:
            y = y.mean(axis=1)

        if len(y) >= self.transform_size:
            frame = y[-self.transform_size:]
        else:
            frame = np.zeros(self.transform_size, dtype=np.float32)
            if len(y):
                frame[-len(y):] = y

        frame = np.nan_to_num(frame, nan=0.0, posinf=0.0, neginf=0.0)
        self.spectrum = np.abs(np.fft.rfft(frame * self.window)) * self._norm
        return self.spectrum

    def magnitude(self, freq_lo: float, freq_hi: float) -> float:
        """Average magnitude of the bins in [freq_lo, freq_hi)."""
        if self.spectrum is None:
            return 0.0

        mask = (self.frequencies >= freq_lo) & (self.frequencies < freq_hi)
        if np.any(mask):
            return float(np.mean(self.spectrum[mask]))

        # Range narrower than a bin: use the nearest one
        centre = (freq_lo + freq_hi) / 2.0
        if centre < 0 or centre > self.frequencies[-1]:
            return 0.0
        idx = int(np.argmin(np.abs(self.frequencies - centre)))
        return float(self.spectrum[idx])

    def reset(self):
        self.spectrum = None
