"""
Engine configuration.

Immutable settings injected into each component at construction.
Runtime changes produce a new instance via ``dataclasses.replace``;
out-of-range values are clamped rather than rejected.
"""

import json
import math
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Union


def clamp(value: float, minimum: float, maximum: float) -> float:
    """Clamp value into [minimum, maximum]."""
    return max(minimum, min(maximum, value))


@dataclass(frozen=True)
class BandRange:
    """Frequency range [min_freq, max_freq) in Hz."""

    min_freq: float
    max_freq: float

    def clamped(self, nyquist: float) -> "BandRange":
        """Return a copy limited to [0, nyquist] with min < max."""
        lo = clamp(float(self.min_freq), 0.0, nyquist)
        hi = clamp(float(self.max_freq), 0.0, nyquist)
        if hi <= lo:
            hi = min(lo + 1.0, nyquist)
            lo = min(lo, hi - 1.0)
        return BandRange(lo, hi)


@dataclass(frozen=True)
class SpectrumConfig:
    """Spectral sampling resolution and band layout."""

    sample_rate: int = 44100
    transform_size: int = 2048
    bass: BandRange = BandRange(20.0, 250.0)
    mid: BandRange = BandRange(250.0, 4000.0)
    treble: BandRange = BandRange(4000.0, 20000.0)

    @property
    def nyquist(self) -> float:
        return self.sample_rate / 2.0

    @property
    def bin_width(self) -> float:
        """Frequency resolution of a single transform bin in Hz."""
        return self.sample_rate / self.transform_size


@dataclass(frozen=True)
class SmoothingConfig:
    """Exponential smoothing and gain applied to raw band magnitudes."""

    smoothing_factor: float = 0.08  # Lower = more inertia, less jitter
    bass_gain: float = 1.0
    mid_gain: float = 1.0
    treble_gain: float = 1.0
    overall_gain: float = 1.0


@dataclass(frozen=True)
class BeatConfig:
    """Beat detection thresholds and timing."""

    history_size: int = 180  # ~3s at 60 Hz
    min_history: int = 10
    recent_window: int = 30
    medium_window: int = 90
    threshold_multiplier: float = 1.3
    variance_threshold: float = 2.0
    sensitivity: float = 1.0  # [0, 1]
    min_interval: float = 0.12  # Hard rate limit between beats (s)
    duration: float = 0.4  # Visual beat cooldown (s)
    multi_method: bool = True
    dynamic_threshold: bool = True


@dataclass(frozen=True)
class ParameterSpec:
    """Range and write policy of a reactive visual parameter."""

    name: str
    minimum: float
    maximum: float
    even_integer: bool = False


def _default_parameters() -> tuple[ParameterSpec, ...]:
    return (
        ParameterSpec("pulse", 0.0, 4.0),
        ParameterSpec("rotation", -10.0, 10.0),
        ParameterSpec("zoom", 0.1, 10.0),
        ParameterSpec("segments", 4, 80, even_integer=True),
        ParameterSpec("hue_shift", 0.0, 1.0),
    )


@dataclass(frozen=True)
class ReactivityConfig:
    """How band levels and beats map onto visual parameters."""

    bass_param: str = "pulse"
    mid_param: str = "rotation"
    treble_param: str = "zoom"
    segments_param: str = "segments"
    color_param: str = "hue_shift"

    bass_intensity: float = 1.0
    mid_intensity: float = 0.5
    treble_intensity: float = 0.5
    bass_scale: float = 1.0
    mid_scale: float = 2.0
    treble_scale: float = 1.0

    beat_duration: float = 0.4
    burst_threshold: float = 2.0  # Zoom/colour bursts only above this intensity
    max_segment_steps: int = 4
    zoom_burst: float = 0.25
    color_burst: float = 0.15

    parameters: tuple[ParameterSpec, ...] = field(default_factory=_default_parameters)

    def spec_for(self, name: str) -> ParameterSpec | None:
        for spec in self.parameters:
            if spec.name == name:
                return spec
        return None


@dataclass(frozen=True)
class EngineConfig:
    """Complete configuration for an AudioReactiveEngine."""

    spectrum: SpectrumConfig = SpectrumConfig()
    smoothing: SmoothingConfig = SmoothingConfig()
    beat: BeatConfig = BeatConfig()
    reactivity: ReactivityConfig = ReactivityConfig()

    def to_dict(self) -> dict[str, Any]:
        """Flatten to plain key/value data (JSON-compatible)."""
        data = asdict(self)
        data["reactivity"]["parameters"] = [
            asdict(spec) for spec in self.reactivity.parameters
        ]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EngineConfig":
        """
        Build a config from key/value data.

        Missing keys keep their defaults, unknown keys are ignored and
        numeric values are clamped into their valid ranges.
        """
        spectrum_data = dict(data.get("spectrum", {}))
        for band in ("bass", "mid", "treble"):
            if band in spectrum_data:
                spectrum_data[band] = _build(BandRange, spectrum_data[band])
        spectrum = _build(SpectrumConfig, spectrum_data)

        reactivity_data = dict(data.get("reactivity", {}))
        if "parameters" in reactivity_data:
            reactivity_data["parameters"] = tuple(
                _build(ParameterSpec, spec) for spec in reactivity_data["parameters"]
            )

        config = cls(
            spectrum=spectrum,
            smoothing=_build(SmoothingConfig, data.get("smoothing", {})),
            beat=_build(BeatConfig, data.get("beat", {})),
            reactivity=_build(ReactivityConfig, reactivity_data),
        )
        return sanitize(config)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "EngineConfig":
        """Load a config from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Config root must be an object: {path}")
        return cls.from_dict(data)

    def to_json(self, path: Union[str, Path]) -> Path:
        """Write the config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        return path


def _build(cls, data: dict[str, Any]):
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


def sanitize_spectrum(cfg: SpectrumConfig) -> SpectrumConfig:
    sample_rate = int(clamp(int(cfg.sample_rate), 1000, 384000))
    transform_size = int(clamp(int(cfg.transform_size), 64, 65536))
    nyquist = sample_rate / 2.0
    return replace(
        cfg,
        sample_rate=sample_rate,
        transform_size=transform_size,
        bass=cfg.bass.clamped(nyquist),
        mid=cfg.mid.clamped(nyquist),
        treble=cfg.treble.clamped(nyquist),
    )


def sanitize_smoothing(cfg: SmoothingConfig) -> SmoothingConfig:
    return replace(
        cfg,
        smoothing_factor=clamp(float(cfg.smoothing_factor), 0.001, 1.0),
        bass_gain=clamp(float(cfg.bass_gain), 0.0, 100.0),
        mid_gain=clamp(float(cfg.mid_gain), 0.0, 100.0),
        treble_gain=clamp(float(cfg.treble_gain), 0.0, 100.0),
        overall_gain=clamp(float(cfg.overall_gain), 0.0, 100.0),
    )


def sanitize_beat(cfg: BeatConfig) -> BeatConfig:
    history_size = int(clamp(int(cfg.history_size), 10, 10000))
    return replace(
        cfg,
        history_size=history_size,
        min_history=int(clamp(int(cfg.min_history), 2, history_size)),
        recent_window=int(clamp(int(cfg.recent_window), 1, history_size)),
        medium_window=int(clamp(int(cfg.medium_window), 1, history_size)),
        threshold_multiplier=clamp(float(cfg.threshold_multiplier), 0.1, 10.0),
        variance_threshold=clamp(float(cfg.variance_threshold), 0.0, 10.0),
        sensitivity=clamp(float(cfg.sensitivity), 0.0, 1.0),
        min_interval=clamp(float(cfg.min_interval), 0.0, 5.0),
        duration=clamp(float(cfg.duration), 0.01, 5.0),
        multi_method=bool(cfg.multi_method),
        dynamic_threshold=bool(cfg.dynamic_threshold),
    )


def sanitize_parameter(spec: ParameterSpec) -> ParameterSpec:
    """
    Order the bounds and, for even-integer parameters, widen the range
    until it holds at least one even value.
    """
    minimum, maximum = sorted((float(spec.minimum), float(spec.maximum)))
    if spec.even_integer:
        lowest_even = 2 * math.ceil(minimum / 2.0)
        if lowest_even > maximum:
            maximum = lowest_even
    if (minimum, maximum) == (spec.minimum, spec.maximum):
        return spec
    return replace(spec, minimum=minimum, maximum=maximum)


def sanitize_reactivity(cfg: ReactivityConfig) -> ReactivityConfig:
    return replace(
        cfg,
        parameters=tuple(sanitize_parameter(spec) for spec in cfg.parameters),
        beat_duration=clamp(float(cfg.beat_duration), 0.01, 5.0),
        burst_threshold=clamp(float(cfg.burst_threshold), 0.0, 10.0),
        max_segment_steps=int(clamp(int(cfg.max_segment_steps), 1, 38)),
    )


def sanitize(config: EngineConfig) -> EngineConfig:
    """Return a copy of config with every value clamped into range."""
    return EngineConfig(
        spectrum=sanitize_spectrum(config.spectrum),
        smoothing=sanitize_smoothing(config.smoothing),
        beat=sanitize_beat(config.beat),
        reactivity=sanitize_reactivity(config.reactivity),
    )
