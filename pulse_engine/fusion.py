"""
Combine the three rate estimates into one reading.

Rules are evaluated in a fixed order and the first match wins:

1. frequency scan, when confident (> 0.3) and within 45 – 180 BPM;
2. autocorrelation, under the same test;
3. peak detection, when its rate is within 45 – 180 BPM;
4. the mean of every raw rate inside the wider 40 – 200 BPM band.

The order mirrors how the methods hold up under motion and lighting
noise (frequency domain > autocorrelation > time-domain peaks) and must
stay fixed so readings are reproducible.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np

from .estimators import Method, Quality, RateEstimate, in_band

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.3
GOOD_CONFIDENCE = 0.6
FALLBACK_BPM_MIN = 40.0
FALLBACK_BPM_MAX = 200.0
FALLBACK_HRV_MS = 50.0


@dataclass(frozen=True)
class FusedEstimate:
    heart_rate_bpm: float
    hrv_ms: float
    quality: Quality
    confidence: float
    method: Method

    @property
    def failed(self) -> bool:
        """True when no estimator produced a plausible rate."""
        return self.heart_rate_bpm <= 0.0

    def as_rate_estimate(self) -> RateEstimate:
        return RateEstimate(
            heart_rate_bpm=self.heart_rate_bpm,
            confidence=self.confidence,
            method=self.method,
            quality=self.quality,
            hrv_ms=self.hrv_ms,
        )


def _confident(est: Optional[RateEstimate]) -> bool:
    return est is not None and est.confidence > CONFIDENCE_THRESHOLD and in_band(est.heart_rate_bpm)


def _find(estimates: Iterable[RateEstimate], method: Method) -> Optional[RateEstimate]:
    for est in estimates:
        if est.method is method:
            return est
    return None


def fuse(estimates: Sequence[RateEstimate]) -> FusedEstimate:
    """
    Pick the most trustworthy heart rate out of *estimates*.

    Parameters
    ----------
    estimates:
        Results of :func:`pulse_engine.estimators.run_all` (any order;
        methods are matched by tag).

    Returns
    -------
    FusedEstimate
        ``heart_rate_bpm == 0`` with ``Quality.POOR`` when nothing usable
        was found.
    """
    freq = _find(estimates, Method.FREQUENCY)
    if _confident(freq):
        quality = Quality.GOOD if freq.confidence > GOOD_CONFIDENCE else Quality.FAIR
        logger.debug("Fusion: frequency scan %.1f BPM (conf %.2f)", freq.heart_rate_bpm, freq.confidence)
        return FusedEstimate(
            heart_rate_bpm=freq.heart_rate_bpm,
            hrv_ms=20.0 + (1.0 - freq.confidence) * 40.0,
            quality=quality,
            confidence=freq.confidence,
            method=Method.FREQUENCY,
        )

    acf = _find(estimates, Method.AUTOCORRELATION)
    if _confident(acf):
        # Correlation can exceed 1 on short windows
        conf = min(1.0, acf.confidence)
        quality = Quality.GOOD if conf > GOOD_CONFIDENCE else Quality.FAIR
        logger.debug("Fusion: autocorrelation %.1f BPM (conf %.2f)", acf.heart_rate_bpm, acf.confidence)
        return FusedEstimate(
            heart_rate_bpm=acf.heart_rate_bpm,
            hrv_ms=25.0 + (1.0 - conf) * 35.0,
            quality=quality,
            confidence=conf,
            method=Method.AUTOCORRELATION,
        )

    peaks = _find(estimates, Method.PEAKS)
    if peaks is not None and in_band(peaks.heart_rate_bpm):
        logger.debug("Fusion: peak detection %.1f BPM (%s)", peaks.heart_rate_bpm, peaks.quality)
        return FusedEstimate(
            heart_rate_bpm=peaks.heart_rate_bpm,
            hrv_ms=peaks.hrv_ms if peaks.hrv_ms is not None else FALLBACK_HRV_MS,
            quality=peaks.quality or Quality.POOR,
            confidence=peaks.confidence,
            method=Method.PEAKS,
        )

    plausible = [
        e.heart_rate_bpm for e in estimates
        if FALLBACK_BPM_MIN <= e.heart_rate_bpm <= FALLBACK_BPM_MAX
    ]
    if not plausible:
        logger.warning("Fusion: no estimator produced a plausible rate")
        return FusedEstimate(0.0, 0.0, Quality.POOR, 0.0, Method.FALLBACK)

    bpm = float(np.mean(plausible))
    logger.warning("Fusion: falling back to the mean of %d estimates (%.1f BPM)", len(plausible), bpm)
    return FusedEstimate(
        heart_rate_bpm=bpm,
        hrv_ms=FALLBACK_HRV_MS,
        quality=Quality.POOR,
        confidence=0.0,
        method=Method.FALLBACK,
    )
