"""
Frame brightness and finger-on-lens detection.

With the torch on and a fingertip pressed over the rear camera, the frame
becomes:
  - Bright (light transmitted through the tissue).
  - Almost uniform (no edges, no scene).

Brightness is the mean BT.601 luminance of the centre square of the frame
(half the shorter side), sampled on a sparse grid to keep the per-frame
cost low.  The same luminance stream is what the measurement session
analyses.
"""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

EFFECTIVE_BRIGHTNESS_THRESHOLD = 50.0


@dataclass(frozen=True)
class FrameReading:
    brightness: float
    variance: float
    finger_detected: bool


def _centre_luminance(frame: np.ndarray, stride: int) -> np.ndarray:
    h, w = frame.shape[:2]
    radius = min(w, h) // 4
    cx, cy = w // 2, h // 2
    patch = frame[max(0, cy - radius):min(h, cy + radius):stride,
                  max(0, cx - radius):min(w, cx + radius):stride]
    if patch.ndim == 2:
        return patch.astype(np.float64)
    # COLOR_BGR2GRAY applies the BT.601 weights 0.299 R + 0.587 G + 0.114 B
    return cv2.cvtColor(np.ascontiguousarray(patch), cv2.COLOR_BGR2GRAY).astype(np.float64)


def frame_brightness(frame: np.ndarray, stride: int = 4) -> float:
    """Mean luminance (0 – 255) of the centre region of a BGR *frame*."""
    lum = _centre_luminance(frame, stride)
    return float(lum.mean()) if lum.size else 0.0


def effective_finger_presence(
    brightness: float,
    coarse_detected: bool,
    threshold: float = EFFECTIVE_BRIGHTNESS_THRESHOLD,
) -> bool:
    """
    Finger presence used by the session.

    Native detection is unreliable across devices, so any reasonably bright
    frame counts as covered.
    """
    return bool(coarse_detected or brightness > threshold)


class FingerDetector:
    """
    Heuristic detector: is the torch-lit camera covered by a finger?

    Parameters
    ----------
    brightness_threshold:
        Minimum mean luminance (0 – 255).  Default: 100.
    variance_threshold:
        Maximum luminance variance across the centre region.  Default: 500.
    """

    def __init__(
        self,
        brightness_threshold: float = 100.0,
        variance_threshold: float = 500.0,
    ) -> None:
        self.brightness_threshold = brightness_threshold
        self.variance_threshold = variance_threshold

    def measure(self, frame: np.ndarray) -> FrameReading:
        """Brightness, variance and the coarse finger verdict for *frame*."""
        brightness = frame_brightness(frame, stride=4)
        coarse = _centre_luminance(frame, stride=8)
        variance = float(coarse.var()) if coarse.size else 0.0
        detected = brightness > self.brightness_threshold and variance < self.variance_threshold
        return FrameReading(brightness=brightness, variance=variance, finger_detected=detected)

    def is_finger(self, frame: np.ndarray) -> bool:
        """
        Return *True* if *frame* looks like a finger covering the lens.

        Parameters
        ----------
        frame:
            BGR image array (H × W × 3, uint8).
        """
        return self.measure(frame).finger_detected
