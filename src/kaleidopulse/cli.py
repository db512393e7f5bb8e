"""
CLI entry point for the beat detection simulator.

Synthesizes a kick-drum track, streams it through the engine frame by
frame and reports the beats it finds.

Usage:
    kaleidopulse-simulate [options]
"""

import argparse
import logging
import sys
import time
from pathlib import Path

import numpy as np

from kaleidopulse.config import EngineConfig
from kaleidopulse.core.reactivity import DictParameterStore
from kaleidopulse.core.spectrum import FFTSpectrum
from kaleidopulse.engine import AudioReactiveEngine
from kaleidopulse.io.exporter import TraceExporter

DEFAULT_PARAMETERS = {
    "pulse": 1.0,
    "rotation": 0.0,
    "zoom": 1.0,
    "segments": 8,
    "hue_shift": 0.0,
}


def synthesize_kick_track(
    duration: float,
    bpm: float,
    sample_rate: int,
    noise: float = 0.02,
    seed: int = 0,
) -> np.ndarray:
    """
    Generate a mono kick-drum pattern with a faint noise floor.

    Each kick is a pitch-dropping sine burst (120 Hz -> 50 Hz) with an
    exponential decay, placed on every beat.
    """
    rng = np.random.default_rng(seed)
    total_samples = int(sample_rate * duration)
    y = rng.standard_normal(total_samples).astype(np.float32) * noise

    kick_len = int(sample_rate * 0.15)
    t = np.arange(kick_len) / sample_rate
    freq = 50.0 + 70.0 * np.exp(-t * 30.0)
    phase = 2 * np.pi * np.cumsum(freq) / sample_rate
    kick = (np.sin(phase) * np.exp(-t * 20.0)).astype(np.float32)

    samples_per_beat = int(sample_rate * 60.0 / bpm)
    for beat_start in range(0, total_samples, samples_per_beat):
        end = min(beat_start + kick_len, total_samples)
        y[beat_start:end] += 0.8 * kick[: end - beat_start]

    return y


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kaleidopulse-simulate",
        description="Run the audio-reactive engine on a synthetic kick track",
    )
    parser.add_argument("--bpm", type=float, default=120.0, help="Kick tempo (default: 120)")
    parser.add_argument("-d", "--duration", type=float, default=8.0, help="Seconds to simulate")
    parser.add_argument("-f", "--fps", type=int, default=60, help="Engine tick rate (default: 60)")
    parser.add_argument("--sample-rate", type=int, default=44100, help="Synthesis sample rate")
    parser.add_argument(
        "--transform-size", type=int, default=2048,
        help="FFT size (default: 2048)",
    )
    parser.add_argument("--noise", type=float, default=0.02, help="Noise floor amplitude")
    parser.add_argument("--sensitivity", type=float, default=None, help="Beat sensitivity [0, 1]")
    parser.add_argument("--threshold", type=float, default=None, help="Threshold multiplier")
    parser.add_argument("--smoothing", type=float, default=None, help="Band smoothing factor (0, 1]")
    parser.add_argument("--single-method", action="store_true", help="Disable the heuristic quorum")
    parser.add_argument("--config", type=Path, default=None, help="JSON engine config")
    parser.add_argument("-o", "--output", type=Path, default=None, help="Write a JSON trace")
    parser.add_argument("--seed", type=int, default=0, help="Random seed")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    if args.duration <= 0 or args.fps <= 0 or args.bpm <= 0:
        parser.error("--duration, --fps and --bpm must be positive")

    if args.config is not None:
        if not args.config.exists():
            print(f"Error: Config file not found: {args.config}", file=sys.stderr)
            return 1
        try:
            config = EngineConfig.from_json(args.config)
        except ValueError as e:
            # JSONDecodeError is a ValueError
            print(f"Error: Invalid config file {args.config}: {e}", file=sys.stderr)
            return 1
    else:
        config = EngineConfig()

    data = config.to_dict()
    data["spectrum"].update(
        sample_rate=args.sample_rate,
        transform_size=args.transform_size,
    )
    config = EngineConfig.from_dict(data)

    spectrum = FFTSpectrum(config.spectrum.sample_rate, config.spectrum.transform_size)
    store = DictParameterStore(DEFAULT_PARAMETERS, config.reactivity.parameters)
    engine = AudioReactiveEngine(store, spectrum.magnitude, config, seed=args.seed)

    if args.sensitivity is not None:
        engine.set_sensitivity(args.sensitivity)
    if args.threshold is not None:
        engine.set_threshold(args.threshold)
    if args.smoothing is not None:
        engine.set_smoothing_factor(args.smoothing)
    if args.single_method:
        engine.set_multi_method(False)

    @engine.on_beat
    def _print_beat(beat):
        methods = ",".join(beat.methods) or "-"
        print(f"  beat @ {beat.timestamp:6.2f}s  intensity {beat.intensity:5.2f}  [{methods}]")

    exporter = TraceExporter(parameters=tuple(DEFAULT_PARAMETERS))

    sr = config.spectrum.sample_rate
    n = config.spectrum.transform_size
    print(f"Synthesizing {args.duration:.1f}s kick track at {args.bpm:.0f} BPM")
    y = synthesize_kick_track(args.duration, args.bpm, sr, noise=args.noise, seed=args.seed)

    engine.set_reactive(True)
    delta = 1.0 / args.fps
    n_ticks = int(args.duration * args.fps)
    beats = 0
    t0 = time.time()

    for tick in range(n_ticks):
        end = int((tick + 1) * sr / args.fps)
        spectrum.push(y[max(0, end - n):end])
        beat = engine.process(delta)
        if beat is not None:
            beats += 1
        exporter.record(engine, beat)

    engine.set_reactive(False)
    elapsed = time.time() - t0

    expected = int(args.duration * args.bpm / 60.0)
    print(f"\nDone! {beats} beats detected ({expected} kicks synthesized)")
    print(f"  {n_ticks} ticks in {elapsed:.2f}s ({n_ticks / max(elapsed, 0.001):.0f} ticks/s)")

    if args.output is not None:
        path = exporter.export_json(args.output)
        print(f"  Trace: {path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
