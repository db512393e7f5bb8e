"""Pytest configuration and shared fixtures."""

import numpy as np
import pytest

from kaleidopulse.config import EngineConfig, ReactivityConfig, SmoothingConfig
from kaleidopulse.core.reactivity import DictParameterStore

# Default analysis settings for tests
TEST_SR = 44100
TEST_N_FFT = 2048
TICK = 1.0 / 60.0


class BandSource:
    """
    Magnitude source returning a fixed level per band region.

    Queries below 250 Hz read ``bass``, below 4 kHz ``mid``, above that
    ``treble``, matching the default band layout.
    """

    def __init__(self, bass: float = 0.0, mid: float = 0.0, treble: float = 0.0):
        self.bass = bass
        self.mid = mid
        self.treble = treble
        self.calls = 0

    def __call__(self, freq_lo: float, freq_hi: float) -> float:
        self.calls += 1
        if freq_lo < 250.0:
            return self.bass
        if freq_lo < 4000.0:
            return self.mid
        return self.treble


@pytest.fixture
def sample_rate() -> int:
    """Default sample rate for tests."""
    return TEST_SR


@pytest.fixture
def transform_size() -> int:
    return TEST_N_FFT


@pytest.fixture
def bin_sine(sample_rate: int, transform_size: int) -> tuple[np.ndarray, float]:
    """
    A unit-amplitude sine centred exactly on FFT bin 40.

    Returns:
        Tuple of (signal, frequency).
    """
    frequency = 40 * sample_rate / transform_size
    t = np.arange(transform_size) / sample_rate
    y = np.sin(2 * np.pi * frequency * t).astype(np.float32)
    return y, frequency


@pytest.fixture
def band_source() -> BandSource:
    return BandSource()


@pytest.fixture
def instant_config() -> EngineConfig:
    """Engine config with no smoothing, so levels equal raw magnitudes."""
    return EngineConfig(smoothing=SmoothingConfig(smoothing_factor=1.0))


@pytest.fixture
def parameter_values() -> dict[str, float]:
    return {
        "pulse": 1.0,
        "rotation": 0.0,
        "zoom": 1.0,
        "segments": 8,
        "hue_shift": 0.2,
    }


@pytest.fixture
def parameter_store(parameter_values) -> DictParameterStore:
    """Host parameter store with the default reactive parameter ranges."""
    return DictParameterStore(parameter_values, ReactivityConfig().parameters)
