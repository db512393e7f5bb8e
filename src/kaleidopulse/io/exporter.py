"""
Trace serialization module.

Records per-tick engine output and exports it to JSON or NumPy for
offline inspection and tuning of detection thresholds.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union

import numpy as np

from kaleidopulse.core.spectrum import Band
from kaleidopulse.engine import AudioReactiveEngine


@dataclass
class TraceMetadata:
    """Metadata header for a recorded trace."""

    fps: float
    n_frames: int
    n_beats: int
    duration: float
    schema_version: str = "1.0"


class TraceExporter:
    """
    Collects one frame per engine tick and writes them out.

    Call ``record`` right after ``AudioReactiveEngine.process``.
    """

    def __init__(self, precision: int = 4, parameters: tuple[str, ...] = ()):
        """
        Initialize the exporter.

        Args:
            precision: Decimal places for floating point values.
            parameters: Parameter names to sample from the engine's store.
        """
        self.precision = precision
        self.parameters = parameters
        self.frames: list[dict[str, Any]] = []

    def _round(self, value: float) -> float:
        """Round to configured precision."""
        return round(float(value), self.precision)

    def record(self, engine: AudioReactiveEngine, beat=None) -> dict[str, Any]:
        """
        Capture the engine's state for the current tick.

        Args:
            engine: Engine that has just processed a tick.
            beat: BeatEvent returned by that tick, if any.

        Returns:
            The recorded frame.
        """
        detector = engine.detector
        frame: dict[str, Any] = {
            "frame_index": len(self.frames),
            "time": self._round(detector.time),
            "bass": self._round(engine.bass),
            "mid": self._round(engine.mid),
            "treble": self._round(engine.treble),
            "is_beat": beat is not None,
            "beat_intensity": self._round(beat.intensity) if beat is not None else 0.0,
            "beat_progress": self._round(engine.beat_progress),
            "threshold": self._round(detector.last_threshold),
            "methods": list(detector.last_result.methods()),
            "history_size": detector.history.size(),
        }
        if self.parameters:
            store = engine.mapper.store
            frame["parameters"] = {
                name: self._round(store.get(name)) for name in self.parameters
            }
        self.frames.append(frame)
        return frame

    def clear(self):
        self.frames.clear()

    def build_trace(self) -> dict[str, Any]:
        """
        Build the complete trace dictionary.

        Returns:
            Trace dictionary ready for serialization.
        """
        n_frames = len(self.frames)
        duration = self.frames[-1]["time"] if n_frames else 0.0
        metadata = TraceMetadata(
            fps=self._round(n_frames / duration) if duration > 0 else 0.0,
            n_frames=n_frames,
            n_beats=sum(1 for frame in self.frames if frame["is_beat"]),
            duration=self._round(duration),
        )

        return {
            "metadata": {
                "fps": metadata.fps,
                "n_frames": metadata.n_frames,
                "n_beats": metadata.n_beats,
                "duration": metadata.duration,
                "schema_version": metadata.schema_version,
            },
            "frames": list(self.frames),
        }

    def export_json(self, output_path: Union[str, Path], indent: int = 2) -> Path:
        """
        Export the trace to a JSON file.

        Args:
            output_path: Path for output JSON file.
            indent: JSON indentation level.

        Returns:
            Path to written file.
        """
        output_path = Path(output_path)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(self.build_trace(), f, indent=indent)
        return output_path

    def export_numpy(self, output_path: Union[str, Path]) -> Path:
        """
        Export the numeric columns as a NumPy .npz archive.

        Args:
            output_path: Path for output .npz file.

        Returns:
            Path to written file.
        """
        output_path = Path(output_path)
        columns = {
            name: np.array([frame[name] for frame in self.frames], dtype=np.float32)
            for name in ("time", *(band.value for band in Band), "beat_intensity", "threshold")
        }
        np.savez_compressed(
            output_path,
            is_beat=np.array([frame["is_beat"] for frame in self.frames], dtype=bool),
            **columns,
        )
        return output_path
