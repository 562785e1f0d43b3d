#!/usr/bin/env python3
"""
Pulse engine – development entry point.

Runs one 20 s measurement session against a webcam (finger over the lens,
torch on) or against a synthetic pulse, and prints the result as JSON.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --simulate BPM       Feed a synthetic pulse instead of the camera
    --noise FLOAT        Synthetic noise, fraction of amplitude (default: 0.05)
    --seed INT           Random seed for synthetic data and jitter
    --duration MS        Capture window in milliseconds (default: 20000)
    --interval MS        Live-estimate cadence in milliseconds (default: 500)
    --fps INT            Nominal frame rate (default: 30)
    --camera-index INT   OpenCV camera index (default: 0)
    --debug              Verbose logging
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

import numpy as np

from pulse_engine.camera import FrameSource
from pulse_engine.session import MeasurementSession, SessionConfig, SessionState
from pulse_engine.synthetic import synthetic_ppg

logger = logging.getLogger("pulse_engine")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Camera PPG pulse measurement (finger over flash)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--simulate", type=float, default=None, metavar="BPM",
                        help="Use a synthetic pulse at this rate instead of the camera")
    parser.add_argument("--noise", type=float, default=0.05,
                        help="Synthetic noise as a fraction of pulse amplitude")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed")
    parser.add_argument("--duration", type=int, default=20_000,
                        help="Capture window in milliseconds")
    parser.add_argument("--interval", type=int, default=500,
                        help="Live-estimate cadence in milliseconds")
    parser.add_argument("--fps", type=int, default=30,
                        help="Nominal frame rate")
    parser.add_argument("--camera-index", type=int, default=0,
                        help="OpenCV VideoCapture index")
    parser.add_argument("--debug", action="store_true",
                        help="Verbose logging")
    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Runners
# ---------------------------------------------------------------------------

def _log_live(session: MeasurementSession, now_ms: int, last_logged: int, interval: int) -> int:
    if now_ms - last_logged < interval:
        return last_logged
    est = session.current_live_estimate(now_ms)
    logger.info(
        "%4.1fs  BPM=%5.1f  conf=%.2f  finger=%s  samples=%d",
        session.elapsed_ms(now_ms) / 1000.0, est.heart_rate_bpm, est.confidence,
        session.finger_present, session.sample_count,
    )
    return now_ms


def run_simulated(session: MeasurementSession, args: argparse.Namespace) -> dict:
    rng = np.random.default_rng(args.seed)
    start = 0
    while True:
        session.start_session(now_ms=start)
        timestamps, values = synthetic_ppg(
            args.simulate,
            duration_s=args.duration / 1000.0,
            fps=float(args.fps),
            noise=args.noise,
            frame_jitter_ms=5.0,
            rng=rng,
            start_ms=start,
        )
        last_logged = start
        for ts, value in zip(timestamps, values):
            session.ingest(float(value), int(ts))
            last_logged = _log_live(session, int(ts), last_logged, args.interval)
        end = start + args.duration
        result = session.complete_session(now_ms=end)
        if result.state is SessionState.COMPLETED:
            return result.to_dict()
        session.reset_session(preserve_retry_count=True)
        start = end


def run_camera(session: MeasurementSession, args: argparse.Namespace) -> dict:
    source = FrameSource(source=args.camera_index, fps=args.fps)
    with source:
        while True:
            session.start_session()
            last_logged = session.clock()
            for ts, frame in source.frames():
                session.ingest_frame(frame, ts)
                last_logged = _log_live(session, ts, last_logged, args.interval)
                if session.window_elapsed(ts):
                    break
            result = session.complete_session()
            if result.state is SessionState.COMPLETED:
                return result.to_dict()
            logger.warning("Not enough signal – keep your finger over the lens. Retrying…")
            session.reset_session(preserve_retry_count=True)


def run(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )
    config = SessionConfig(
        duration_ms=args.duration,
        analysis_interval_ms=args.interval,
        nominal_fps=float(args.fps),
    )
    session = MeasurementSession(config=config, rng=np.random.default_rng(args.seed))

    try:
        if args.simulate is not None:
            result = run_simulated(session, args)
        else:
            result = run_camera(session, args)
    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted.")
        session.reset_session()
        return 130

    print(json.dumps(result, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    return run(parse_args(argv))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
