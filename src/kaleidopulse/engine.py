"""
Per-tick audio reactivity engine.

Orchestrates the flow from spectral magnitudes to beat-tagged band
levels and reactive visual parameters.
"""

import logging
import math
from typing import Any, Callable, Optional

from kaleidopulse.config import EngineConfig, sanitize
from kaleidopulse.core.beat import BeatDetector, BeatEvent
from kaleidopulse.core.reactivity import ParameterStore, ReactivityMapper
from kaleidopulse.core.spectrum import (
    Band,
    BandSmoother,
    MagnitudeSource,
    SpectrumSampler,
)

logger = logging.getLogger(__name__)

BeatCallback = Callable[[BeatEvent], None]
LevelCallback = Callable[[Band, float], None]


class AudioReactiveEngine:
    """
    Complete sampling-to-parameters processing chain.

    Combines band sampling, smoothing, beat detection and reactivity
    mapping behind a single ``process(delta)`` call made once per frame
    by the host render loop.
    """

    def __init__(
        self,
        store: ParameterStore,
        source: Optional[MagnitudeSource] = None,
        config: EngineConfig | None = None,
        seed: Optional[int] = None,
    ):
        """
        Initialize the engine.

        Args:
            store: Host-owned visual parameters driven while reactive.
            source: Spectral magnitude query ``(freq_lo, freq_hi) -> float``.
            config: Engine configuration (defaults if None).
            seed: Seed for the random beat perturbations.
        """
        config = sanitize(config or EngineConfig())

        self.sampler = SpectrumSampler(config.spectrum, source)
        self.smoother = BandSmoother(config.smoothing)
        self.detector = BeatDetector(config.beat)
        self.mapper = ReactivityMapper(store, config.reactivity, seed=seed)

        self._beat_callbacks: list[BeatCallback] = []
        self._level_callbacks: list[LevelCallback] = []
        self.last_beat: BeatEvent | None = None

    # Events

    def on_beat(self, callback: BeatCallback) -> BeatCallback:
        """Register a beat-detected callback; returns it for decorator use."""
        self._beat_callbacks.append(callback)
        return callback

    def on_level(self, callback: LevelCallback) -> LevelCallback:
        """Register a per-band level-updated callback."""
        self._level_callbacks.append(callback)
        return callback

    def remove_callback(self, callback: Callable):
        if callback in self._beat_callbacks:
            self._beat_callbacks.remove(callback)
        if callback in self._level_callbacks:
            self._level_callbacks.remove(callback)

    # Tick

    def process(self, delta: float) -> BeatEvent | None:
        """
        Run one tick of the pipeline.

        Args:
            delta: Seconds since the previous tick.

        Returns:
            The BeatEvent raised this tick, or None.
        """
        if not math.isfinite(delta) or delta < 0.0:
            delta = 0.0

        levels = self.smoother.update(self.sampler.sample())
        for band, level in levels.items():
            for callback in self._level_callbacks:
                callback(band, level)

        beat = None
        if self.sampler.is_ready:
            beat = self.detector.update(levels[Band.BASS], delta)

        if beat is not None:
            self._emit_beat(beat)

        self.mapper.update(levels, beat, delta)
        return beat

    def trigger_beat(self, intensity: float = 1.0) -> BeatEvent:
        """
        Inject a beat (for testing and manual triggers).

        Callbacks fire and parameters are perturbed immediately; the
        transients decay on subsequent ``process`` calls.
        """
        beat = self.detector.trigger_beat(intensity)
        self._emit_beat(beat)
        if self.mapper.enabled:
            self.mapper.apply_beat(beat.intensity)
        return beat

    def _emit_beat(self, beat: BeatEvent):
        self.last_beat = beat
        for callback in self._beat_callbacks:
            callback(beat)

    # Accessors

    @property
    def config(self) -> EngineConfig:
        """Current settings of every component, after runtime changes."""
        return EngineConfig(
            spectrum=self.sampler.config,
            smoothing=self.smoother.config,
            beat=self.detector.config,
            reactivity=self.mapper.config,
        )

    @property
    def is_ready(self) -> bool:
        """True when a magnitude source is attached."""
        return self.sampler.is_ready

    @property
    def levels(self) -> dict[Band, float]:
        return dict(self.smoother.levels)

    @property
    def bass(self) -> float:
        return self.smoother.levels[Band.BASS]

    @property
    def mid(self) -> float:
        return self.smoother.levels[Band.MID]

    @property
    def treble(self) -> float:
        return self.smoother.levels[Band.TREBLE]

    @property
    def is_beat_active(self) -> bool:
        return self.detector.is_beat_active

    @property
    def beat_progress(self) -> float:
        return self.detector.beat_progress

    @property
    def beat_intensity(self) -> float:
        return self.detector.beat_intensity

    @property
    def is_reactive(self) -> bool:
        return self.mapper.enabled

    def diagnostics(self) -> dict[str, Any]:
        """Snapshot of levels, detector state and mapper state."""
        return {
            "ready": self.is_ready,
            "levels": {band.value: level for band, level in self.smoother.levels.items()},
            "beat": self.detector.diagnostics(),
            "reactive": self.mapper.enabled,
            "base_values": dict(self.mapper.base_values),
            "transients": {
                name: effect.remaining for name, effect in self.mapper.transients.items()
            },
        }

    # Mutators

    def set_source(self, source: Optional[MagnitudeSource]):
        """Attach or detach the magnitude source."""
        self.sampler.source = source
        if source is None:
            logger.info("Magnitude source detached; bands will report 0")

    def set_band_gain(self, band: Band, gain: float):
        self.smoother.set_gain(band, gain)

    def set_overall_gain(self, gain: float):
        self.smoother.set_overall_gain(gain)

    def set_band_range(self, band: Band, min_freq: float, max_freq: float):
        self.sampler.set_band_range(band, min_freq, max_freq)

    def set_smoothing_factor(self, factor: float):
        self.smoother.set_smoothing_factor(factor)

    def set_threshold(self, multiplier: float):
        self.detector.set_threshold(multiplier)

    def set_sensitivity(self, sensitivity: float):
        self.detector.set_sensitivity(sensitivity)

    def set_min_interval(self, seconds: float):
        self.detector.set_min_interval(seconds)

    def set_beat_duration(self, seconds: float):
        """Set the beat cooldown and the decay time of beat effects together."""
        self.detector.set_duration(seconds)
        self.mapper.set_config(beat_duration=seconds)

    def set_multi_method(self, enabled: bool):
        self.detector.set_multi_method(enabled)

    def set_dynamic_threshold(self, enabled: bool):
        self.detector.set_dynamic_threshold(enabled)

    def set_reactive(self, enabled: bool):
        """Toggle reactivity; disabling restores every base value at once."""
        self.mapper.set_enabled(enabled)

    def reset(self):
        """Clear levels, history and reactivity state; keep settings."""
        self.mapper.disable()
        self.smoother.reset()
        self.detector.reset()
        self.last_beat = None
