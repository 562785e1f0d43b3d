"""
Heart-rate estimators.

Three independent strategies share the same contract::

    estimator(signal, sample_rate, timestamps_ms=None) -> RateEstimate

``signal`` is the conditioned brightness trace (see
:mod:`pulse_engine.conditioner`); ``timestamps_ms`` are the matching
capture times, used only by the peak detector.  When omitted, they are
reconstructed from ``sample_rate``.

Algorithms
----------
1. :func:`frequency_scan` – direct evaluation of the signal's projection on
   sine/cosine bases from 0.7 Hz to 3.5 Hz in 0.05 Hz steps (57 bins, a
   3 BPM grid independent of window length).
2. :func:`autocorrelation` – normalised autocorrelation over the lags
   matching 45 – 180 BPM; the strongest lag is the beat period.
3. :func:`peak_detection` – local maxima above an adaptive threshold,
   inter-beat intervals, and their spread (HRV).

Every estimate outside 45 – 180 BPM is reported as invalid (zero
confidence) while keeping the raw rate for the fusion fallback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Tuple

import numpy as np
from scipy.signal import argrelextrema, correlate

logger = logging.getLogger(__name__)

BPM_MIN = 45.0
BPM_MAX = 180.0

SCAN_HZ_LOW = 0.7
SCAN_HZ_HIGH = 3.5
SCAN_HZ_STEP = 0.05
SCAN_CONFIDENCE_NORMALIZER = 5.0
SCAN_MIN_SAMPLES = 32

AUTOCORR_MIN_SAMPLES = 60
HARMONIC_TOLERANCE = 0.9

PEAK_NEIGHBOURS = 2
PEAK_THRESHOLD_FRACTION = 0.3
MIN_BEAT_INTERVAL_MS = 333.0     # 180 BPM
MAX_BEAT_INTERVAL_MS = 1500.0    # 40 BPM


class Method(str, Enum):
    FREQUENCY = "frequency"
    AUTOCORRELATION = "autocorrelation"
    PEAKS = "peaks"
    FALLBACK = "fallback"
    SYNTHETIC = "synthetic"


class Quality(str, Enum):
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


@dataclass(frozen=True)
class RateEstimate:
    """
    One estimator's answer.

    ``confidence == 0`` means "no usable estimate".  ``heart_rate_bpm`` may
    still hold the raw out-of-band rate in that case.
    """
    heart_rate_bpm: float
    confidence: float
    method: Method
    quality: Optional[Quality] = None
    hrv_ms: Optional[float] = None
    intervals_ms: Tuple[float, ...] = field(default=(), repr=False)

    @property
    def valid(self) -> bool:
        return self.confidence > 0.0 and in_band(self.heart_rate_bpm)


Estimator = Callable[..., RateEstimate]


def in_band(bpm: float, low: float = BPM_MIN, high: float = BPM_MAX) -> bool:
    return low <= bpm <= high


def _invalid(method: Method, bpm: float = 0.0, **extra) -> RateEstimate:
    return RateEstimate(heart_rate_bpm=bpm, confidence=0.0, method=method, **extra)


def scan_frequencies() -> np.ndarray:
    """The candidate frequencies (Hz) evaluated by :func:`frequency_scan`."""
    count = int(round((SCAN_HZ_HIGH - SCAN_HZ_LOW) / SCAN_HZ_STEP)) + 1
    return np.round(SCAN_HZ_LOW + SCAN_HZ_STEP * np.arange(count), 4)


def _timeline(n: int, sample_rate: float, timestamps_ms: Optional[np.ndarray]) -> np.ndarray:
    if timestamps_ms is not None and len(timestamps_ms) == n:
        return np.asarray(timestamps_ms, dtype=np.float64)
    return np.arange(n, dtype=np.float64) * (1000.0 / sample_rate)


# ---------------------------------------------------------------------------
# 1. Bounded frequency-domain scan
# ---------------------------------------------------------------------------

def frequency_magnitudes(signal: np.ndarray, sample_rate: float) -> Tuple[np.ndarray, np.ndarray]:
    """Return ``(freqs_hz, magnitude)`` of *signal* on the scan grid."""
    freqs = scan_frequencies()
    t = np.arange(len(signal)) / sample_rate
    phase = 2.0 * np.pi * np.outer(freqs, t)
    re = np.cos(phase) @ signal
    im = np.sin(phase) @ signal
    return freqs, np.hypot(re, im)


def frequency_scan(
    signal: np.ndarray,
    sample_rate: float,
    timestamps_ms: Optional[np.ndarray] = None,
) -> RateEstimate:
    """
    Strongest frequency on the 0.7 – 3.5 Hz grid.

    Confidence is the peak-to-mean magnitude ratio divided by an empirical
    normaliser of 5, clamped to [0, 1].  Needs at least 32 samples.
    """
    signal = np.asarray(signal, dtype=np.float64)
    if len(signal) < SCAN_MIN_SAMPLES or sample_rate <= 0:
        return _invalid(Method.FREQUENCY)

    freqs, magnitude = frequency_magnitudes(signal, sample_rate)
    mean_mag = float(np.mean(magnitude))
    if mean_mag <= 1e-9:
        return _invalid(Method.FREQUENCY)

    peak_idx = int(np.argmax(magnitude))
    bpm = float(freqs[peak_idx] * 60.0)
    ratio = float(magnitude[peak_idx]) / mean_mag
    confidence = min(1.0, max(0.0, ratio / SCAN_CONFIDENCE_NORMALIZER))

    if not in_band(bpm):
        return _invalid(Method.FREQUENCY, bpm)
    return RateEstimate(heart_rate_bpm=bpm, confidence=confidence, method=Method.FREQUENCY)


# ---------------------------------------------------------------------------
# 2. Autocorrelation period search
# ---------------------------------------------------------------------------

def lag_range(sample_rate: float) -> Tuple[int, int]:
    """Inclusive ``(min_lag, max_lag)`` in samples for the 45 – 180 BPM band."""
    min_lag = max(1, int(np.ceil(sample_rate * 60.0 / BPM_MAX)))
    max_lag = int(np.floor(sample_rate * 60.0 / BPM_MIN))
    return min_lag, max_lag


def normalized_autocorrelation(signal: np.ndarray) -> np.ndarray:
    """
    Autocorrelation of the mean-centred *signal* for lags ``0 .. n-1``.

    Each lag is averaged over its overlap and divided by the variance, so
    lag 0 is exactly 1.  Returns an empty array for zero-variance input.
    """
    x = np.asarray(signal, dtype=np.float64)
    x = x - np.mean(x)
    n = len(x)
    variance = float(np.dot(x, x)) / n if n else 0.0
    if variance <= 1e-12:
        return np.array([])
    full = correlate(x, x, mode="full", method="direct")[n - 1:]
    overlap = np.arange(n, 0, -1, dtype=np.float64)
    return full / overlap / variance


def _best_lag(acf: np.ndarray, min_lag: int, max_lag: int) -> int:
    """
    Lag of maximum correlation in ``[min_lag, max_lag]``.

    Multiples of the beat period correlate almost as well as the period
    itself, so the shortest local maximum within ``HARMONIC_TOLERANCE`` of
    the global maximum wins.
    """
    window = acf[min_lag:max_lag + 1]
    best = min_lag + int(np.argmax(window))
    floor = HARMONIC_TOLERANCE * acf[best]
    if acf[best] <= 0.0:
        return best
    for i in range(min_lag, best):
        if acf[i] >= floor and acf[i] >= acf[i - 1] and acf[i] >= acf[i + 1]:
            return i
    return best


def autocorrelation(
    signal: np.ndarray,
    sample_rate: float,
    timestamps_ms: Optional[np.ndarray] = None,
) -> RateEstimate:
    """
    Period of the strongest self-similarity between 45 and 180 BPM.

    The confidence is the normalised correlation at the best lag; a
    negative correlation gives zero confidence.  Needs 60 samples and a
    non-flat signal.
    """
    signal = np.asarray(signal, dtype=np.float64)
    if len(signal) < AUTOCORR_MIN_SAMPLES or sample_rate <= 0:
        return _invalid(Method.AUTOCORRELATION)

    acf = normalized_autocorrelation(signal)
    if acf.size == 0:
        logger.debug("Autocorrelation skipped: zero-variance signal")
        return _invalid(Method.AUTOCORRELATION)

    min_lag, max_lag = lag_range(sample_rate)
    max_lag = min(max_lag, len(acf) - 2)
    if max_lag < min_lag:
        return _invalid(Method.AUTOCORRELATION)

    i = _best_lag(acf, min_lag, max_lag)
    lag = float(i)
    peak_corr = float(acf[i])

    # Parabolic interpolation around the best lag for sub-sample resolution
    alpha, beta, gamma = acf[i - 1], acf[i], acf[i + 1]
    denom = alpha - 2.0 * beta + gamma
    if denom < 0.0:
        lag += float(np.clip(0.5 * (alpha - gamma) / denom, -0.5, 0.5))

    bpm = 60.0 * sample_rate / lag
    confidence = max(0.0, peak_corr)
    if confidence == 0.0 or not in_band(bpm):
        return _invalid(Method.AUTOCORRELATION, bpm)
    return RateEstimate(heart_rate_bpm=bpm, confidence=confidence, method=Method.AUTOCORRELATION)


# ---------------------------------------------------------------------------
# 3. Peak detection with adaptive threshold
# ---------------------------------------------------------------------------

def adaptive_threshold(signal: np.ndarray) -> float:
    median = float(np.median(signal))
    return median + PEAK_THRESHOLD_FRACTION * (float(np.max(signal)) - median)


def detect_peaks(signal: np.ndarray, times_ms: np.ndarray) -> np.ndarray:
    """
    Indices of accepted beats in *signal*.

    A beat is a strict local maximum over two neighbours on each side that
    clears :func:`adaptive_threshold` and lies at least 333 ms after the
    previously accepted beat.
    """
    if len(signal) < 2 * PEAK_NEIGHBOURS + 1:
        return np.array([], dtype=int)

    candidates = argrelextrema(signal, np.greater, order=PEAK_NEIGHBOURS, mode="clip")[0]
    # mode="clip" lets samples near the edges qualify with fewer neighbours
    candidates = candidates[
        (candidates >= PEAK_NEIGHBOURS) & (candidates < len(signal) - PEAK_NEIGHBOURS)
    ]
    candidates = candidates[signal[candidates] > adaptive_threshold(signal)]

    accepted = []
    last_t = None
    for idx in candidates:
        t = times_ms[idx]
        if last_t is not None and t - last_t < MIN_BEAT_INTERVAL_MS:
            continue
        accepted.append(idx)
        last_t = t
    return np.asarray(accepted, dtype=int)


def classify_quality(survival: float, bpm: float) -> Quality:
    if survival >= 0.7 and 50.0 <= bpm <= 150.0:
        return Quality.GOOD
    if survival < 0.4:
        return Quality.POOR
    return Quality.FAIR


def peak_detection(
    signal: np.ndarray,
    sample_rate: float,
    timestamps_ms: Optional[np.ndarray] = None,
) -> RateEstimate:
    """
    Heart rate and HRV from beat-to-beat intervals.

    Intervals outside 333 – 1500 ms are discarded; the share that survives
    drives both the quality class and the confidence.  HRV is the standard
    deviation of the surviving intervals.
    """
    signal = np.asarray(signal, dtype=np.float64)
    if len(signal) == 0 or sample_rate <= 0:
        return _invalid(Method.PEAKS, quality=Quality.POOR)

    times = _timeline(len(signal), sample_rate, timestamps_ms)
    peaks = detect_peaks(signal, times)
    if len(peaks) < 2:
        return _invalid(Method.PEAKS, quality=Quality.POOR)

    intervals = np.diff(times[peaks])
    kept = intervals[(intervals >= MIN_BEAT_INTERVAL_MS) & (intervals <= MAX_BEAT_INTERVAL_MS)]
    if kept.size == 0:
        return _invalid(Method.PEAKS, quality=Quality.POOR)

    survival = kept.size / intervals.size
    bpm = 60000.0 / float(np.mean(kept))
    quality = classify_quality(survival, bpm)
    hrv = float(np.std(kept))
    logger.debug(
        "Peaks: %d beats, %d/%d intervals kept, %.1f BPM, HRV %.1f ms",
        len(peaks), kept.size, intervals.size, bpm, hrv,
    )

    if not in_band(bpm):
        return _invalid(Method.PEAKS, bpm, quality=Quality.POOR, hrv_ms=hrv)
    return RateEstimate(
        heart_rate_bpm=bpm,
        confidence=float(survival),
        method=Method.PEAKS,
        quality=quality,
        hrv_ms=hrv,
        intervals_ms=tuple(float(v) for v in kept),
    )


# Fixed preference order used by fusion.
ESTIMATORS: Tuple[Estimator, ...] = (frequency_scan, autocorrelation, peak_detection)


def run_all(
    signal: np.ndarray,
    sample_rate: float,
    timestamps_ms: Optional[np.ndarray] = None,
) -> Tuple[RateEstimate, ...]:
    """Run every estimator in preference order."""
    return tuple(est(signal, sample_rate, timestamps_ms) for est in ESTIMATORS)
