"""
Real-time beat detection on the smoothed bass trace.

Keeps a rolling history of bass levels, derives window statistics,
runs five independent threshold heuristics and fires a beat when
enough of them agree and the minimum interval has elapsed.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable

import numpy as np

from kaleidopulse.config import BeatConfig, sanitize_beat

logger = logging.getLogger(__name__)

# Denominator floor for ratio tests on near-silent input
AVERAGE_FLOOR = 0.01
MIN_INTENSITY = 0.1
MAX_INTENSITY = 10.0

# Dynamic threshold adjustment by signal spread
HIGH_STD = 0.1
LOW_STD = 0.05
HIGH_STD_SCALE = 0.8
LOW_STD_SCALE = 1.3

QUORUM_FRACTION = 0.4


class BassHistory:
    """Bounded ring buffer of recent smoothed bass levels."""

    def __init__(self, capacity: int = 180):
        self.capacity = capacity
        self._values: deque[float] = deque(maxlen=capacity)

    def append(self, value: float):
        self._values.append(float(value))

    def size(self) -> int:
        return len(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def values(self) -> np.ndarray:
        """Oldest-first copy of the history."""
        return np.fromiter(self._values, dtype=np.float64, count=len(self._values))

    def resize(self, capacity: int):
        """Change capacity, keeping the most recent values."""
        self.capacity = capacity
        self._values = deque(self._values, maxlen=capacity)

    def clear(self):
        self._values.clear()


@dataclass(frozen=True)
class BeatStatistics:
    """Window statistics of the bass history at one detection attempt."""

    current: float
    recent_avg: float
    medium_avg: float
    overall_avg: float
    variance: float
    std_dev: float

    @classmethod
    def from_history(
        cls,
        history: BassHistory,
        recent_window: int = 30,
        medium_window: int = 90,
    ) -> "BeatStatistics":
        values = history.values()
        if len(values) == 0:
            return cls(0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

        # Windows shrink to the available history
        recent = values[-min(recent_window, len(values)):]
        medium = values[-min(medium_window, len(values)):]
        variance = float(np.var(values))

        return cls(
            current=float(values[-1]),
            recent_avg=float(np.mean(recent)),
            medium_avg=float(np.mean(medium)),
            overall_avg=float(np.mean(values)),
            variance=variance,
            std_dev=math.sqrt(variance),
        )

    def ratio(self) -> float:
        """Current level relative to the (floored) overall average."""
        return self.current / max(self.overall_avg, AVERAGE_FLOOR)


# (name, predicate(stats, threshold, config))
Heuristic = tuple[str, Callable[[BeatStatistics, float, BeatConfig], bool]]

HEURISTICS: tuple[Heuristic, ...] = (
    ("basic", lambda s, t, c: s.current > s.overall_avg * t),
    ("recent", lambda s, t, c: s.current > s.recent_avg * t * 0.9),
    ("variance", lambda s, t, c: s.current > s.overall_avg + s.std_dev * c.variance_threshold),
    ("medium", lambda s, t, c: s.current > s.medium_avg * t * 1.1),
    ("intensity", lambda s, t, c: s.ratio() > t),
)

METHOD_NAMES = tuple(name for name, _ in HEURISTICS)


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of every heuristic for one tick."""

    basic: bool = False
    recent: bool = False
    variance: bool = False
    medium: bool = False
    intensity: bool = False

    @property
    def count(self) -> int:
        return sum(1 for name in METHOD_NAMES if getattr(self, name))

    def methods(self) -> tuple[str, ...]:
        """Names of the heuristics that fired."""
        return tuple(name for name in METHOD_NAMES if getattr(self, name))


@dataclass(frozen=True)
class BeatEvent:
    """A detected (or injected) beat."""

    intensity: float
    timestamp: float  # Detector clock, seconds
    methods: tuple[str, ...] = ()
    forced: bool = False


def quorum(n_methods: int = len(HEURISTICS)) -> int:
    """Minimum number of agreeing heuristics in multi-method mode."""
    return max(2, round(QUORUM_FRACTION * n_methods))


def dynamic_threshold(std_dev: float, config: BeatConfig) -> float:
    """
    Beat threshold adapted to the spread of recent bass levels.

    Busy signals (high spread) get a lower threshold, flat signals a
    higher one. Always within ``multiplier * [0.8, 1.3] * (2 - sensitivity)``.
    """
    threshold = config.threshold_multiplier
    if config.dynamic_threshold:
        if std_dev > HIGH_STD:
            threshold *= HIGH_STD_SCALE
        elif std_dev < LOW_STD:
            threshold *= LOW_STD_SCALE
    return threshold * (2.0 - config.sensitivity)


def beat_intensity(stats: BeatStatistics, method_count: int, sensitivity: float) -> float:
    """Score a beat by its prominence, agreement and signal spread."""
    intensity = (
        stats.ratio()
        * (1.0 + 0.2 * (max(method_count, 1) - 1))
        * (1.0 + min(2.0 * stats.std_dev, 1.0))
        * sensitivity
    )
    return float(np.clip(intensity, MIN_INTENSITY, MAX_INTENSITY))


class BeatDetector:
    """
    Statistical beat detector driven by per-tick bass levels.

    Two timers run off the supplied delta-time: ``min_interval`` rate
    limits detection, ``duration`` is the visual beat cooldown exposed
    through ``is_beat_active`` / ``beat_progress``.
    """

    def __init__(self, config: BeatConfig | None = None):
        self.config = sanitize_beat(config or BeatConfig())
        self.history = BassHistory(self.config.history_size)

        self.time = 0.0
        self.last_beat_time = -math.inf
        self.beat_timer = 0.0
        self.beat_intensity = 0.0
        self.beat_count = 0

        self.last_statistics: BeatStatistics | None = None
        self.last_result = DetectionResult()
        self.last_threshold = 0.0

    def update(self, bass: float, delta: float) -> BeatEvent | None:
        """
        Feed one smoothed bass sample.

        Returns a BeatEvent when a beat fires, otherwise None.
        """
        delta = max(0.0, float(delta)) if math.isfinite(delta) else 0.0
        self.time += delta
        if self.beat_timer > 0.0:
            self.beat_timer = max(0.0, self.beat_timer - delta)

        bass = float(bass) if math.isfinite(bass) else 0.0
        self.history.append(max(0.0, bass))

        if self.history.size() < self.config.min_history:
            return None
        if self.time - self.last_beat_time < self.config.min_interval:
            return None

        stats = BeatStatistics.from_history(
            self.history,
            self.config.recent_window,
            self.config.medium_window,
        )
        threshold = dynamic_threshold(stats.std_dev, self.config)
        result = DetectionResult(
            **{name: bool(test(stats, threshold, self.config)) for name, test in HEURISTICS}
        )

        self.last_statistics = stats
        self.last_result = result
        self.last_threshold = threshold

        if self.config.multi_method:
            fired = result.count >= quorum()
        else:
            fired = result.basic
        if not fired:
            return None

        intensity = beat_intensity(stats, result.count, self.config.sensitivity)
        event = BeatEvent(
            intensity=intensity,
            timestamp=self.time,
            methods=result.methods(),
        )
        self._register(event)
        logger.debug(
            "Beat at %.3fs intensity=%.2f methods=%s threshold=%.3f",
            event.timestamp, intensity, ",".join(event.methods), threshold,
        )
        return event

    def trigger_beat(self, intensity: float = 1.0) -> BeatEvent:
        """Inject a beat regardless of the heuristics and the interval."""
        intensity = float(np.clip(intensity, MIN_INTENSITY, MAX_INTENSITY))
        event = BeatEvent(intensity=intensity, timestamp=self.time, forced=True)
        self._register(event)
        return event

    def _register(self, event: BeatEvent):
        self.last_beat_time = event.timestamp
        self.beat_timer = self.config.duration
        self.beat_intensity = event.intensity
        self.beat_count += 1

    @property
    def is_beat_active(self) -> bool:
        return self.beat_timer > 0.0

    @property
    def beat_progress(self) -> float:
        """0.0 at the beat, rising to 1.0 when the cooldown has elapsed."""
        if self.beat_timer <= 0.0:
            return 1.0 if self.beat_count else 0.0
        return 1.0 - self.beat_timer / self.config.duration

    @property
    def time_since_beat(self) -> float:
        return self.time - self.last_beat_time

    # Settings

    def _apply(self, **changes):
        self.config = sanitize_beat(replace(self.config, **changes))
        if self.history.capacity != self.config.history_size:
            self.history.resize(self.config.history_size)
        logger.debug("Beat settings updated: %s", changes)

    def set_threshold(self, multiplier: float):
        self._apply(threshold_multiplier=multiplier)

    def set_sensitivity(self, sensitivity: float):
        self._apply(sensitivity=sensitivity)

    def set_min_interval(self, seconds: float):
        self._apply(min_interval=seconds)

    def set_duration(self, seconds: float):
        self._apply(duration=seconds)

    def set_variance_threshold(self, value: float):
        self._apply(variance_threshold=value)

    def set_history_size(self, size: int):
        self._apply(history_size=size)

    def set_multi_method(self, enabled: bool):
        self._apply(multi_method=enabled)

    def set_dynamic_threshold(self, enabled: bool):
        self._apply(dynamic_threshold=enabled)

    def reset(self):
        """Forget history and beat timing, keep settings."""
        self.history.clear()
        self.time = 0.0
        self.last_beat_time = -math.inf
        self.beat_timer = 0.0
        self.beat_intensity = 0.0
        self.beat_count = 0
        self.last_statistics = None
        self.last_result = DetectionResult()
        self.last_threshold = 0.0

    def diagnostics(self) -> dict[str, Any]:
        """Read-only snapshot of detector state."""
        stats = self.last_statistics
        return {
            "history_size": self.history.size(),
            "history_capacity": self.history.capacity,
            "time": self.time,
            "time_since_beat": self.time_since_beat,
            "beat_count": self.beat_count,
            "beat_active": self.is_beat_active,
            "beat_intensity": self.beat_intensity,
            "threshold": self.last_threshold,
            "methods": self.last_result.methods(),
            "statistics": None if stats is None else {
                "current": stats.current,
                "recent_avg": stats.recent_avg,
                "medium_avg": stats.medium_avg,
                "overall_avg": stats.overall_avg,
                "variance": stats.variance,
                "std_dev": stats.std_dev,
            },
        }
