"""
Signal conditioning for the raw brightness trace.

Stage 1 removes the DC level (the flash-lit finger sits at a large,
slowly-drifting brightness).  Stage 2 is a centred moving average that
knocks down sensor noise above the cardiac band.  Window edges use only
the samples that exist; they are never zero-padded.
"""

from __future__ import annotations

import numpy as np

NOMINAL_FPS = 30.0


def effective_sample_rate(timestamps_ms: np.ndarray, nominal: float = NOMINAL_FPS) -> float:
    """
    Measured sample rate in Hz for *timestamps_ms*.

    Camera frame delivery is irregular, so the rate is derived from the
    first and last timestamps instead of trusting the nominal fps.  Falls
    back to *nominal* when the timestamps span no time.
    """
    n = len(timestamps_ms)
    if n < 2:
        return nominal
    duration_s = (float(timestamps_ms[-1]) - float(timestamps_ms[0])) / 1000.0
    if duration_s <= 0:
        return nominal
    return (n - 1) / duration_s


def smoothing_window(sample_rate: float) -> int:
    return max(3, int(sample_rate // 10))


def moving_average(values: np.ndarray, window: int) -> np.ndarray:
    """Centred moving average with truncated windows at both edges."""
    n = len(values)
    if n == 0:
        return values.astype(np.float64)
    half = window // 2
    csum = np.concatenate(([0.0], np.cumsum(values, dtype=np.float64)))
    idx = np.arange(n)
    lo = np.clip(idx - half, 0, n)
    hi = np.clip(idx - half + window, 0, n)
    return (csum[hi] - csum[lo]) / (hi - lo)


def condition(values: np.ndarray, sample_rate: float) -> np.ndarray:
    """
    Remove the DC offset from *values* and smooth the result.

    Parameters
    ----------
    values:
        Brightness samples in chronological order.
    sample_rate:
        Empirical sample rate in Hz (see :func:`effective_sample_rate`).

    Returns
    -------
    numpy.ndarray
        Filtered signal with the same length as *values*.
    """
    signal = np.asarray(values, dtype=np.float64)
    if signal.size == 0:
        return signal.copy()
    signal = signal - np.mean(signal)
    return moving_average(signal, smoothing_window(sample_rate))
