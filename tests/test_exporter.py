"""Tests for the TraceExporter module."""

import json

import numpy as np
import pytest

from kaleidopulse.engine import AudioReactiveEngine
from kaleidopulse.io.exporter import TraceExporter

from conftest import TICK, BandSource


class TestTraceExporter:
    """Tests for trace recording and serialization."""

    @pytest.fixture
    def recorded(self, parameter_store, instant_config):
        """Exporter holding 51 ticks that end in a single beat."""
        source = BandSource(bass=0.05, mid=0.1, treble=0.2)
        engine = AudioReactiveEngine(parameter_store, source, instant_config, seed=0)
        engine.set_reactive(True)
        exporter = TraceExporter(parameters=("pulse", "segments"))

        for i in range(51):
            source.bass = 0.5 if i == 50 else 0.05
            beat = engine.process(TICK)
            exporter.record(engine, beat)
        return exporter

    def test_frame_structure(self, recorded):
        frame = recorded.frames[0]

        required = {
            "frame_index", "time", "bass", "mid", "treble", "is_beat",
            "beat_intensity", "beat_progress", "threshold", "methods",
            "history_size", "parameters",
        }
        assert required <= set(frame)
        assert frame["frame_index"] == 0
        assert frame["is_beat"] is False
        assert set(frame["parameters"]) == {"pulse", "segments"}

    def test_beat_frame(self, recorded):
        last = recorded.frames[-1]

        assert last["is_beat"] is True
        assert last["beat_intensity"] > 1.0
        assert "basic" in last["methods"]
        assert last["bass"] == pytest.approx(0.5)

    def test_precision(self, parameter_store):
        engine = AudioReactiveEngine(parameter_store, BandSource(bass=1 / 3))
        exporter = TraceExporter(precision=2)
        engine.process(TICK)

        frame = exporter.record(engine)
        assert frame["bass"] == round(engine.bass, 2)
        assert "parameters" not in frame

    def test_build_trace_metadata(self, recorded):
        trace = recorded.build_trace()
        metadata = trace["metadata"]

        assert metadata["n_frames"] == 51
        assert metadata["n_beats"] == 1
        assert metadata["duration"] == pytest.approx(51 * TICK, abs=1e-3)
        assert metadata["fps"] == pytest.approx(60.0, abs=0.1)
        assert metadata["schema_version"] == "1.0"
        assert len(trace["frames"]) == 51

    def test_empty_trace(self):
        metadata = TraceExporter().build_trace()["metadata"]

        assert metadata["n_frames"] == 0
        assert metadata["fps"] == 0.0

    def test_export_json(self, recorded, tmp_path):
        path = recorded.export_json(tmp_path / "trace.json")

        with open(path) as f:
            loaded = json.load(f)

        assert loaded["metadata"]["n_frames"] == 51
        assert loaded["frames"][-1]["is_beat"] is True

    def test_export_numpy(self, recorded, tmp_path):
        path = recorded.export_numpy(tmp_path / "trace.npz")

        data = np.load(path)
        for key in ("time", "bass", "mid", "treble", "beat_intensity", "threshold", "is_beat"):
            assert key in data
        assert data["bass"].shape == (51,)
        assert data["is_beat"].sum() == 1

    def test_clear(self, recorded):
        recorded.clear()

        assert recorded.frames == []
