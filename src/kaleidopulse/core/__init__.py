"""Core signal processing modules."""

from kaleidopulse.core.beat import BeatDetector
from kaleidopulse.core.reactivity import ReactivityMapper
from kaleidopulse.core.spectrum import BandSmoother, SpectrumSampler

__all__ = ["BandSmoother", "BeatDetector", "ReactivityMapper", "SpectrumSampler"]
