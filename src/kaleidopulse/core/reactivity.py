"""
Maps band levels and beats onto visual parameters.

The mapper captures the host's parameter values as base values when
enabled, perturbs them from the smoothed band levels each tick, and
layers short-lived beat transients on top that hold, then ease back
to base.
"""

import logging
from dataclasses import dataclass, replace
from typing import Iterable, Optional, Protocol

import numpy as np

from kaleidopulse.config import (
    ParameterSpec,
    ReactivityConfig,
    clamp,
    sanitize_reactivity,
)
from kaleidopulse.core.beat import MAX_INTENSITY, BeatEvent
from kaleidopulse.core.spectrum import Band

logger = logging.getLogger(__name__)

# Tolerance for accumulated delta-time when a transient expires
TIME_EPSILON = 1e-6


class ParameterStore(Protocol):
    """
    Externally owned visual parameters.

    Stores that also implement ``__contains__`` have only the names they
    hold tracked by the mapper; others must hold every mapped name
    before reactivity is enabled.
    """

    def get(self, name: str) -> float: ...

    def set(self, name: str, value: float) -> None: ...


class DictParameterStore:
    """In-memory parameter store that clamps to registered ranges."""

    def __init__(
        self,
        values: dict[str, float] | None = None,
        specs: Iterable[ParameterSpec] = (),
    ):
        self.values: dict[str, float] = dict(values or {})
        self.specs = {spec.name: spec for spec in specs}

    def __contains__(self, name: str) -> bool:
        return name in self.values

    def get(self, name: str) -> float:
        return self.values.get(name, 0.0)

    def set(self, name: str, value: float) -> None:
        spec = self.specs.get(name)
        if spec is not None:
            value = clamp(value, spec.minimum, spec.maximum)
        self.values[name] = value


def nearest_even(value: float) -> int:
    return int(2 * round(value / 2.0))


def constrain(spec: ParameterSpec, value: float) -> float:
    """
    Apply a parameter's write policy: clamp, and for even-integer
    parameters round to the nearest even value inside the range.
    """
    value = clamp(float(value), spec.minimum, spec.maximum)
    if not spec.even_integer:
        return value

    even = nearest_even(value)
    if even < spec.minimum:
        even += 2
    if even > spec.maximum:
        even -= 2
    return even


def ease_out(t: float) -> float:
    """Quadratic ease-out on [0, 1]."""
    t = clamp(t, 0.0, 1.0)
    return 1.0 - (1.0 - t) ** 2


@dataclass
class TransientEffect:
    """Temporary beat-driven override of one parameter."""

    name: str
    base: float
    peak: float
    current: float
    remaining: float
    duration: float

    def advance(self, delta: float) -> float:
        """
        Step the effect and return the value to write.

        The first half of the duration holds the peak; the second half
        eases out from peak to base, reaching it exactly at expiry.
        """
        self.remaining -= delta
        half = self.duration / 2.0
        if self.remaining <= TIME_EPSILON:
            self.remaining = 0.0
            self.current = self.base
        elif self.remaining <= half:
            progress = 1.0 - self.remaining / half
            self.current = self.peak + (self.base - self.peak) * ease_out(progress)
        else:
            self.current = self.peak
        return self.current

    @property
    def expired(self) -> bool:
        return self.remaining <= 0.0


class ReactivityMapper:
    """
    Drives parameters in a ParameterStore from audio levels and beats.

    While enabled the mapper must be the only writer of the parameters
    it tracks; edit base values through ``set_base``.
    """

    def __init__(
        self,
        store: ParameterStore,
        config: ReactivityConfig | None = None,
        seed: Optional[int] = None,
    ):
        self.store = store
        self.config = sanitize_reactivity(config or ReactivityConfig())
        self.rng = np.random.default_rng(seed)

        self.enabled = False
        self.base_values: dict[str, float] = {}
        self.transients: dict[str, TransientEffect] = {}

    @property
    def tracked(self) -> tuple[str, ...]:
        """Names of parameters the mapper writes that have a spec."""
        cfg = self.config
        names = (
            cfg.bass_param,
            cfg.mid_param,
            cfg.treble_param,
            cfg.segments_param,
            cfg.color_param,
        )
        seen = []
        for name in names:
            if name and name not in seen and cfg.spec_for(name) is not None:
                seen.append(name)
        return tuple(seen)

    def _write(self, name: str, value: float) -> float:
        spec = self.config.spec_for(name)
        if spec is not None:
            value = constrain(spec, value)
        self.store.set(name, value)
        return value

    def _normalise(self, name: str, value: float) -> float:
        spec = self.config.spec_for(name)
        return constrain(spec, value) if spec is not None else float(value)

    def _holds(self, name: str) -> bool:
        contains = getattr(self.store, "__contains__", None)
        return contains is None or contains(name)

    # Lifecycle

    def enable(self):
        """Capture current parameter values as bases and start mapping."""
        if self.enabled:
            return
        self.base_values = {
            name: self._normalise(name, self.store.get(name))
            for name in self.tracked
            if self._holds(name)
        }
        self.transients.clear()
        self.enabled = True
        logger.info("Reactivity enabled for %s", ", ".join(self.base_values))

    def disable(self):
        """Restore every tracked parameter to its base and drop all state."""
        if not self.enabled:
            return
        for name, base in self.base_values.items():
            self.store.set(name, base)
        self.base_values.clear()
        self.transients.clear()
        self.enabled = False
        logger.info("Reactivity disabled, parameters restored")

    def set_enabled(self, enabled: bool):
        if enabled:
            self.enable()
        else:
            self.disable()

    def set_base(self, name: str, value: float):
        """Change a base value while enabled (e.g. from a UI edit)."""
        if name not in self.base_values:
            self.store.set(name, self._normalise(name, value))
            return
        base = self._normalise(name, value)
        self.base_values[name] = base
        effect = self.transients.get(name)
        if effect is not None:
            effect.base = base

    def set_config(self, **changes):
        self.config = sanitize_reactivity(replace(self.config, **changes))

    # Per tick

    def update(
        self,
        levels: dict[Band, float],
        beat: BeatEvent | None,
        delta: float,
    ):
        """Advance transients, apply a new beat, then map band levels."""
        if not self.enabled:
            return

        for name in list(self.transients):
            effect = self.transients[name]
            self._write(name, effect.advance(delta))
            if effect.expired:
                del self.transients[name]

        if beat is not None:
            self.apply_beat(beat.intensity)

        cfg = self.config
        mappings = (
            (cfg.bass_param, Band.BASS, cfg.bass_intensity, cfg.bass_scale),
            (cfg.mid_param, Band.MID, cfg.mid_intensity, cfg.mid_scale),
            (cfg.treble_param, Band.TREBLE, cfg.treble_intensity, cfg.treble_scale),
        )
        for name, band, intensity, scale in mappings:
            if name not in self.base_values or name in self.transients:
                continue
            level = levels.get(band, 0.0)
            self._write(name, self.base_values[name] + level * intensity * scale)

    def apply_beat(self, intensity: float):
        """Perturb parameters for one beat of the given intensity."""
        cfg = self.config

        if cfg.segments_param in self.base_values:
            base = self.base_values[cfg.segments_param]
            steps = int(clamp(round(intensity), 1, cfg.max_segment_steps))
            offset = 2 * int(self.rng.integers(1, steps + 1))
            sign = 1 if self.rng.random() < 0.5 else -1
            target = self._normalise(cfg.segments_param, base + sign * offset)
            if target == base:
                # Pinned at a range limit; go the other way
                target = self._normalise(cfg.segments_param, base - sign * offset)
            self._start_transient(cfg.segments_param, target)

        if intensity > cfg.burst_threshold:
            burst = (intensity - cfg.burst_threshold) / max(MAX_INTENSITY - cfg.burst_threshold, 1.0)
            if cfg.treble_param in self.base_values:
                base = self.base_values[cfg.treble_param]
                self._start_transient(
                    cfg.treble_param,
                    base * (1.0 + cfg.zoom_burst * (1.0 + burst)),
                )
            if cfg.color_param in self.base_values:
                base = self.base_values[cfg.color_param]
                self._start_transient(
                    cfg.color_param,
                    base + cfg.color_burst * (1.0 + burst),
                )

    def _start_transient(self, name: str, target: float):
        base = self.base_values[name]
        value = self._write(name, target)
        self.transients[name] = TransientEffect(
            name=name,
            base=base,
            peak=value,
            current=value,
            remaining=self.config.beat_duration,
            duration=self.config.beat_duration,
        )
