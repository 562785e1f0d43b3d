"""
Final physiological reading for a session.

Besides the fused rate and HRV, the dosha classifier needs two shape
features of the pulse:

pulse strength
    Perfusion-style ratio of pulsatile amplitude to the flash-lit DC
    brightness.  A 2 % modulation (typical for a fingertip over the torch)
    maps to full strength.
regularity
    ``1 - coefficient of variation`` of the beat-to-beat intervals.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional, Sequence

import numpy as np

from .fusion import FusedEstimate

FULL_STRENGTH_MODULATION = 0.02


@dataclass(frozen=True)
class PulseMetrics:
    heart_rate_bpm: int
    hrv_ms: float
    pulse_strength: float    # 0 – 1
    regularity: float        # 0 – 1

    def to_dict(self) -> dict:
        return asdict(self)


def _clamp01(value: float) -> float:
    return float(min(1.0, max(0.0, value)))


def pulse_strength(conditioned: np.ndarray, dc_level: float) -> float:
    """
    Pulsatile strength of *conditioned* relative to *dc_level*.

    The amplitude is half the 5th – 95th percentile span so isolated
    spikes do not inflate it.
    """
    if len(conditioned) == 0 or dc_level <= 0:
        return 0.0
    p5, p95 = np.percentile(conditioned, [5, 95])
    amplitude = (p95 - p5) / 2.0
    return _clamp01(amplitude / dc_level / FULL_STRENGTH_MODULATION)


def regularity(intervals_ms: Sequence[float], fallback: float = 0.0) -> float:
    """Rhythm regularity from inter-beat intervals; *fallback* when there are fewer than two."""
    if len(intervals_ms) < 2:
        return _clamp01(fallback)
    arr = np.asarray(intervals_ms, dtype=np.float64)
    mean = float(np.mean(arr))
    if mean <= 0:
        return _clamp01(fallback)
    return _clamp01(1.0 - float(np.std(arr)) / mean)


def build_metrics(
    fused: FusedEstimate,
    conditioned: np.ndarray,
    dc_level: float,
    intervals_ms: Optional[Sequence[float]] = None,
) -> PulseMetrics:
    """Assemble :class:`PulseMetrics` from a fused estimate and its signal."""
    return PulseMetrics(
        heart_rate_bpm=int(round(fused.heart_rate_bpm)),
        hrv_ms=float(fused.hrv_ms),
        pulse_strength=pulse_strength(conditioned, dc_level),
        regularity=regularity(intervals_ms or (), fallback=fused.confidence),
    )
