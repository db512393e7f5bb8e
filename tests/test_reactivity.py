"""Tests for the ReactivityMapper module."""

import numpy as np
import pytest

from kaleidopulse.config import ParameterSpec, ReactivityConfig
from kaleidopulse.core.beat import BeatEvent
from kaleidopulse.core.reactivity import (
    DictParameterStore,
    ReactivityMapper,
    TransientEffect,
    constrain,
    ease_out,
)
from kaleidopulse.core.spectrum import Band

SILENT = {Band.BASS: 0.0, Band.MID: 0.0, Band.TREBLE: 0.0}
SEGMENTS = ParameterSpec("segments", 4, 80, even_integer=True)


def beat(intensity: float) -> BeatEvent:
    return BeatEvent(intensity=intensity, timestamp=0.0)


class RecordingStore(DictParameterStore):
    """Parameter store that keeps every write."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.writes: list[tuple[str, float]] = []

    def set(self, name, value):
        self.writes.append((name, value))
        super().set(name, value)


class TestConstrain:
    """Tests for the parameter write policy."""

    @pytest.mark.parametrize(
        "value, expected",
        [(8, 8), (7, 8), (5, 4), (4.9, 4), (3, 4), (81, 80), (79.2, 80), (-20, 4), (1000, 80)],
    )
    def test_even_integer(self, value, expected):
        result = constrain(SEGMENTS, value)

        assert result == expected
        assert result % 2 == 0

    def test_odd_bounds_stay_inside(self):
        spec = ParameterSpec("odd", 3, 9, even_integer=True)

        assert constrain(spec, 3) == 4
        assert constrain(spec, 9) == 8

    def test_continuous_clamped(self):
        spec = ParameterSpec("zoom", 0.1, 10.0)

        assert constrain(spec, 0.0) == 0.1
        assert constrain(spec, 2.5) == 2.5
        assert constrain(spec, 20.0) == 10.0


class TestTransientEffect:
    """Tests for hold-then-ease transient decay."""

    def test_ease_out_bounds(self):
        assert ease_out(0.0) == 0.0
        assert ease_out(1.0) == 1.0
        assert ease_out(2.0) == 1.0
        assert 0.5 < ease_out(0.5) < 1.0

    def test_holds_then_returns_to_base(self):
        effect = TransientEffect("zoom", base=1.0, peak=2.0, current=2.0, remaining=0.4, duration=0.4)

        assert effect.advance(0.1) == 2.0
        assert 1.0 < effect.advance(0.2) < 2.0
        assert effect.advance(0.1) == 1.0
        assert effect.expired


class TestReactivityMapper:
    """Tests for band and beat driven parameter mapping."""

    def test_enable_captures_base_values(self, parameter_store, parameter_values):
        mapper = ReactivityMapper(parameter_store)
        mapper.enable()

        assert mapper.enabled
        assert mapper.base_values == parameter_values

    def test_enable_normalises_odd_segments(self, parameter_store):
        parameter_store.values["segments"] = 7
        mapper = ReactivityMapper(parameter_store)
        mapper.enable()

        assert mapper.base_values["segments"] == 8

    def test_missing_parameters_not_tracked(self):
        store = RecordingStore({"pulse": 1.0, "segments": 8}, ReactivityConfig().parameters)
        mapper = ReactivityMapper(store, seed=0)
        mapper.enable()

        assert set(mapper.base_values) == {"pulse", "segments"}

        mapper.update({Band.BASS: 0.5, Band.MID: 0.5, Band.TREBLE: 0.5}, beat(6.0), 0.05)
        mapper.disable()

        assert {name for name, _ in store.writes} == {"pulse", "segments"}
        assert "zoom" not in store
        assert "hue_shift" not in store

    def test_disabled_mapper_writes_nothing(self):
        store = RecordingStore({"pulse": 1.0}, ReactivityConfig().parameters)
        mapper = ReactivityMapper(store)
        mapper.update({Band.BASS: 1.0, Band.MID: 1.0, Band.TREBLE: 1.0}, beat(5.0), 0.1)

        assert store.writes == []

    def test_band_levels_perturb_parameters(self, parameter_store):
        mapper = ReactivityMapper(parameter_store)
        mapper.enable()
        mapper.update({Band.BASS: 0.5, Band.MID: 0.25, Band.TREBLE: 0.4}, None, 1 / 60)

        assert parameter_store.get("pulse") == pytest.approx(1.5)
        assert parameter_store.get("rotation") == pytest.approx(0.25)
        assert parameter_store.get("zoom") == pytest.approx(1.2)

    def test_band_levels_clamped(self, parameter_store):
        mapper = ReactivityMapper(parameter_store)
        mapper.enable()
        mapper.update({Band.BASS: 10.0, Band.MID: 0.0, Band.TREBLE: 0.0}, None, 1 / 60)

        assert parameter_store.get("pulse") == 4.0

    def test_mapping_relative_to_base_not_previous(self, parameter_store):
        mapper = ReactivityMapper(parameter_store)
        mapper.enable()
        for _ in range(10):
            mapper.update({Band.BASS: 0.5, Band.MID: 0.0, Band.TREBLE: 0.0}, None, 1 / 60)

        assert parameter_store.get("pulse") == pytest.approx(1.5)

    def test_beat_perturbs_segments(self, parameter_store):
        mapper = ReactivityMapper(parameter_store, seed=1)
        mapper.enable()
        mapper.update(SILENT, beat(1.0), 0.0)

        value = parameter_store.get("segments")
        assert value != 8
        assert value % 2 == 0
        assert "segments" in mapper.transients

    def test_bursts_gated_by_intensity(self, parameter_store):
        mapper = ReactivityMapper(parameter_store, seed=1)
        mapper.enable()

        mapper.update(SILENT, beat(1.5), 0.0)
        assert set(mapper.transients) == {"segments"}

        mapper.update(SILENT, beat(3.0), 0.0)
        assert set(mapper.transients) == {"segments", "zoom", "hue_shift"}
        assert parameter_store.get("zoom") > 1.0
        assert parameter_store.get("hue_shift") > 0.2

    def test_segments_pinned_at_max_move_down(self, parameter_store):
        parameter_store.values["segments"] = 80
        mapper = ReactivityMapper(parameter_store, seed=2)
        mapper.enable()
        for _ in range(10):
            mapper.apply_beat(4.0)
            assert parameter_store.get("segments") < 80

    def test_segments_always_even_and_in_range(self):
        store = RecordingStore(
            {"pulse": 1.0, "rotation": 0.0, "zoom": 1.0, "segments": 76, "hue_shift": 0.0},
            ReactivityConfig().parameters,
        )
        mapper = ReactivityMapper(store, seed=11)
        mapper.enable()
        rng = np.random.default_rng(5)

        for _ in range(600):
            event = beat(float(rng.uniform(0.1, 10.0))) if rng.random() < 0.1 else None
            mapper.update(SILENT, event, float(rng.uniform(0.0, 0.05)))
            if rng.random() < 0.02:
                mapper.set_base("segments", float(rng.uniform(0.0, 100.0)))
        mapper.disable()

        writes = [value for name, value in store.writes if name == "segments"]
        assert len(writes) > 50
        for value in writes:
            assert value % 2 == 0
            assert 4 <= value <= 80

    def test_disable_restores_base_values(self, parameter_store, parameter_values):
        mapper = ReactivityMapper(parameter_store, seed=3)
        mapper.enable()
        levels = {Band.BASS: 0.7, Band.MID: 0.3, Band.TREBLE: 0.9}
        mapper.update(levels, beat(6.0), 0.05)
        mapper.update(levels, None, 0.05)
        assert parameter_store.values != parameter_values

        mapper.disable()

        for name, value in parameter_values.items():
            assert parameter_store.get(name) == pytest.approx(value, abs=1e-9)
        assert not mapper.enabled
        assert mapper.transients == {}
        assert mapper.base_values == {}

    def test_set_base_while_enabled(self, parameter_store):
        mapper = ReactivityMapper(parameter_store)
        mapper.enable()
        mapper.set_base("pulse", 2.0)
        mapper.update({Band.BASS: 0.5, Band.MID: 0.0, Band.TREBLE: 0.0}, None, 1 / 60)

        assert parameter_store.get("pulse") == pytest.approx(2.5)

        mapper.disable()
        assert parameter_store.get("pulse") == 2.0

    def test_set_base_untracked_writes_through(self, parameter_store):
        mapper = ReactivityMapper(parameter_store)
        mapper.set_base("segments", 13.2)

        assert parameter_store.get("segments") == 14

    def test_new_beat_replaces_transient_keeping_base(self, parameter_store):
        mapper = ReactivityMapper(parameter_store, seed=4)
        mapper.enable()
        mapper.update(SILENT, beat(3.0), 0.0)
        mapper.update(SILENT, None, 0.1)
        mapper.update(SILENT, beat(3.0), 0.0)

        effect = mapper.transients["segments"]
        assert effect.base == 8
        assert effect.remaining == pytest.approx(mapper.config.beat_duration)

    def test_transient_holds_then_decays_to_base(self, parameter_store):
        """Beat at t=0 with 0.4s duration: hold for 0.2s, ease out, base at 0.4s."""
        mapper = ReactivityMapper(parameter_store, ReactivityConfig(beat_duration=0.4), seed=9)
        mapper.enable()
        mapper.update(SILENT, beat(3.0), 0.0)

        segments_peak = parameter_store.get("segments")
        zoom_peak = parameter_store.get("zoom")
        assert segments_peak != 8
        assert zoom_peak > 1.0

        segments = []
        zoom = []
        for _ in range(40):
            mapper.update(SILENT, None, 0.01)
            segments.append(parameter_store.get("segments"))
            zoom.append(parameter_store.get("zoom"))

        # t = 0.01 .. 0.19: held at the peak
        assert all(value == segments_peak for value in segments[:19])
        assert all(value == pytest.approx(zoom_peak) for value in zoom[:19])

        # t = 0.2 .. 0.39: monotonic approach to base
        zoom_distance = [abs(value - 1.0) for value in zoom[19:]]
        assert all(b <= a + 1e-12 for a, b in zip(zoom_distance, zoom_distance[1:]))
        segment_distance = [abs(value - 8) for value in segments[19:]]
        assert all(b <= a for a, b in zip(segment_distance, segment_distance[1:]))

        # t = 0.4: back at base and released
        assert segments[-1] == 8
        assert zoom[-1] == pytest.approx(1.0)
        assert mapper.transients == {}
