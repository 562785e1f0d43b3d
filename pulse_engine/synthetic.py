"""
Synthetic fingertip PPG traces.

Produces the brightness stream a torch-lit fingertip would give the
camera: a high DC level, a small cardiac oscillation, optional white
noise and irregular frame delivery.  Used for offline runs of the CLI and
for tests.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np


def synthetic_ppg(
    bpm: float,
    duration_s: float = 20.0,
    fps: float = 30.0,
    baseline: float = 180.0,
    amplitude: float = 4.0,
    noise: float = 0.0,
    frame_jitter_ms: float = 0.0,
    phase: float = 0.3,
    rng: Optional[np.random.Generator] = None,
    start_ms: int = 0,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Return ``(timestamps_ms, brightness)`` for a sinusoidal pulse at *bpm*.

    Parameters
    ----------
    noise:
        Standard deviation of additive Gaussian noise, as a fraction of
        *amplitude*.
    frame_jitter_ms:
        Maximum uniform jitter added to each frame time.
    """
    rng = rng if rng is not None else np.random.default_rng(0)
    n = int(round(duration_s * fps))
    t_ms = np.arange(n) * (1000.0 / fps)
    if frame_jitter_ms > 0:
        t_ms = t_ms + rng.uniform(-frame_jitter_ms, frame_jitter_ms, n)
        t_ms = np.maximum.accumulate(t_ms)
    timestamps = start_ms + np.round(t_ms).astype(np.int64)

    hz = bpm / 60.0
    values = baseline + amplitude * np.sin(2.0 * np.pi * hz * t_ms / 1000.0 + phase)
    if noise > 0:
        values = values + rng.normal(0.0, noise * amplitude, n)
    return timestamps, values
