"""
Pulse engine – camera PPG pulse measurement.

Place a fingertip over the phone's rear camera with the torch on; the
engine turns the stream of frame brightness values into a heart rate,
an HRV estimate and a dosha (Vata / Pitta / Kapha) score.
"""

from .dosha import Dosha, DoshaScore, classify
from .estimators import Method, Quality, RateEstimate
from .metrics import PulseMetrics
from .sample_buffer import Sample, SampleBuffer
from .session import (
    MeasurementSession,
    SessionConfig,
    SessionResult,
    SessionState,
    SessionStateError,
)

__version__ = "0.1.0"
__author__ = "pulse_engine"
