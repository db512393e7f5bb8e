"""Real-time audio analysis engine for reactive visuals."""

from kaleidopulse.config import EngineConfig
from kaleidopulse.core.beat import BeatDetector, BeatEvent
from kaleidopulse.core.reactivity import DictParameterStore, ReactivityMapper
from kaleidopulse.core.spectrum import Band, BandSmoother, FFTSpectrum, SpectrumSampler
from kaleidopulse.engine import AudioReactiveEngine

__version__ = "0.1.0"
__all__ = [
    "AudioReactiveEngine",
    "Band",
    "BandSmoother",
    "BeatDetector",
    "BeatEvent",
    "DictParameterStore",
    "EngineConfig",
    "FFTSpectrum",
    "ReactivityMapper",
    "SpectrumSampler",
]
