"""
Dosha scoring of a finished pulse reading.

Ayurvedic pulse reading (Nadi Pariksha) describes three archetypes:

* Vata  – fast, irregular, feeble ("like a snake")
* Pitta – strong, regular, jumping ("like a frog")
* Kapha – slow, steady, strong ("like a swan")

Each feature hands a fixed point budget to one or two buckets::

    heart rate   30   >80 Vata | 70–80 Pitta | <70 Kapha
    HRV          25   >60 Vata | >35–60 Pitta | ≤35 Kapha
    regularity   25   <0.8 Vata | otherwise 15 Pitta + 10 Kapha
    strength     20   <0.6 Vata | >0.85 Kapha | otherwise Pitta

The buckets are converted to integer percentages.  When the spread
between the highest and lowest bucket is 20 points or less, the reading
is reported as Balanced.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Tuple

from .metrics import PulseMetrics

BALANCED_SPREAD = 20


class Dosha(str, Enum):
    VATA = "Vata"
    PITTA = "Pitta"
    KAPHA = "Kapha"
    BALANCED = "Balanced"


_INTERPRETATIONS: Dict[Dosha, str] = {
    Dosha.VATA: (
        "Your pulse shows Vata characteristics - quick, light, and variable like a snake. "
        "Heart rate: {bpm} bpm (elevated). This indicates active Vata energy, possibly from "
        "stress, movement, or mental activity."
    ),
    Dosha.PITTA: (
        "Your pulse shows Pitta characteristics - strong, regular, and forceful like a frog. "
        "Heart rate: {bpm} bpm. This indicates balanced metabolic fire and good "
        "cardiovascular strength."
    ),
    Dosha.KAPHA: (
        "Your pulse shows Kapha characteristics - slow, steady, and strong like a swan. "
        "Heart rate: {bpm} bpm (calm). This indicates grounded, stable energy and good endurance."
    ),
    Dosha.BALANCED: (
        "Your pulse shows balanced characteristics across all three doshas. "
        "Heart rate: {bpm} bpm. This indicates good overall doshic harmony."
    ),
}

_RECOMMENDATIONS: Dict[Dosha, Tuple[str, ...]] = {
    Dosha.VATA: (
        "Practice grounding activities: yoga, meditation, nature walks",
        "Eat warm, cooked, nourishing foods (soups, stews, healthy fats)",
        "Maintain regular sleep schedule (in bed by 10pm)",
        "Oil massage (Abhyanga) with sesame oil",
        "Reduce caffeine, cold foods, and excessive screen time",
    ),
    Dosha.PITTA: (
        "Practice cooling activities: swimming, moonlight walks",
        "Eat cooling foods: cucumber, coconut, cilantro, sweet fruits",
        "Avoid overworking and competitive stress",
        "Oil massage with coconut oil",
        "Take breaks from intense mental work",
    ),
    Dosha.KAPHA: (
        "Increase vigorous exercise and movement",
        "Eat light, warm, spicy foods (ginger, black pepper)",
        "Wake up early (before 6am) to avoid morning Kapha",
        "Dry brushing and stimulating massage",
        "Reduce dairy, sugar, and heavy foods",
    ),
    Dosha.BALANCED: (
        "Maintain your current healthy routines",
        "Continue balanced diet and lifestyle practices",
        "Monitor for seasonal dosha changes",
        "Keep up regular exercise and stress management",
    ),
}


@dataclass(frozen=True)
class DoshaScore:
    vata: int
    pitta: int
    kapha: int
    dominant: Dosha
    interpretation: str = ""
    recommendations: Tuple[str, ...] = field(default=(), repr=False)

    def to_dict(self) -> dict:
        return {
            "vata": self.vata,
            "pitta": self.pitta,
            "kapha": self.kapha,
            "dominant": self.dominant.value,
            "interpretation": self.interpretation,
            "recommendations": list(self.recommendations),
        }


def dosha_points(metrics: PulseMetrics) -> Tuple[int, int, int]:
    """Raw ``(vata, pitta, kapha)`` points for *metrics*."""
    vata = pitta = kapha = 0

    if metrics.heart_rate_bpm > 80:
        vata += 30
    elif metrics.heart_rate_bpm >= 70:
        pitta += 30
    else:
        kapha += 30

    if metrics.hrv_ms > 60:
        vata += 25
    elif metrics.hrv_ms > 35:
        pitta += 25
    else:
        kapha += 25

    if metrics.regularity < 0.8:
        vata += 25
    else:
        pitta += 15
        kapha += 10

    if metrics.pulse_strength < 0.6:
        vata += 20
    elif metrics.pulse_strength > 0.85:
        kapha += 20
    else:
        pitta += 20

    return vata, pitta, kapha


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def to_percentages(points: Tuple[int, int, int]) -> Tuple[int, int, int]:
    """
    Integer percentages of *points* summing to exactly 100.

    Buckets are rounded independently; any drift is absorbed by the
    largest bucket.
    """
    total = sum(points)
    if total <= 0:
        return 33, 34, 33
    pct = [_round_half_up(p * 100.0 / total) for p in points]
    drift = 100 - sum(pct)
    if drift:
        largest = max(range(3), key=lambda i: pct[i])
        pct[largest] += drift
    return pct[0], pct[1], pct[2]


def dominant_dosha(vata: int, pitta: int, kapha: int) -> Dosha:
    """Highest bucket (Vata, then Pitta, then Kapha on ties) unless the spread is ≤ 20."""
    high = max(vata, pitta, kapha)
    if high - min(vata, pitta, kapha) <= BALANCED_SPREAD:
        return Dosha.BALANCED
    if vata == high:
        return Dosha.VATA
    if pitta == high:
        return Dosha.PITTA
    return Dosha.KAPHA


def interpretation(dosha: Dosha, heart_rate_bpm: int) -> str:
    return _INTERPRETATIONS[dosha].format(bpm=heart_rate_bpm)


def recommendations(dosha: Dosha) -> List[str]:
    return list(_RECOMMENDATIONS[dosha])


def classify(metrics: PulseMetrics) -> DoshaScore:
    """Score *metrics* and pick the dominant dosha."""
    vata, pitta, kapha = to_percentages(dosha_points(metrics))
    dominant = dominant_dosha(vata, pitta, kapha)
    return DoshaScore(
        vata=vata,
        pitta=pitta,
        kapha=kapha,
        dominant=dominant,
        interpretation=interpretation(dominant, metrics.heart_rate_bpm),
        recommendations=_RECOMMENDATIONS[dominant],
    )
